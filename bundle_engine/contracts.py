"""
Contract Calldata Encoding
==========================

Encodes the handful of Uniswap V2 router and ERC-20 calls the bundler signs.

Calls:
- approve(address,uint256)                                    ERC-20
- addLiquidityETH(address,uint256,uint256,uint256,address,uint256)  router
- swapExactETHForTokens(uint256,address[],address,uint256)     router
- swapExactTokensForETH(uint256,uint256,address[],address,uint256)  router
"""

from typing import List

from eth_abi import encode
from web3 import Web3


APPROVE_SIG = "approve(address,uint256)"
ADD_LIQUIDITY_ETH_SIG = "addLiquidityETH(address,uint256,uint256,uint256,address,uint256)"
SWAP_EXACT_ETH_FOR_TOKENS_SIG = "swapExactETHForTokens(uint256,address[],address,uint256)"
SWAP_EXACT_TOKENS_FOR_ETH_SIG = "swapExactTokensForETH(uint256,uint256,address[],address,uint256)"

# Read-only ABI used through web3 contract objects
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
]


def selector(signature: str) -> bytes:
    """First four bytes of keccak(signature)."""
    return bytes(Web3.keccak(text=signature)[:4])


class V2CallEncoder:
    """
    Builds calldata for the router and token calls in a bundle.

    All addresses are checksummed before encoding, so callers may pass
    lowercase hex.
    """

    def __init__(self, router_address: str, weth_address: str):
        self.router = Web3.to_checksum_address(router_address)
        self.weth = Web3.to_checksum_address(weth_address)

    def approve(self, spender: str, amount: int) -> bytes:
        return selector(APPROVE_SIG) + encode(
            ['address', 'uint256'],
            [Web3.to_checksum_address(spender), amount]
        )

    def add_liquidity_eth(
        self,
        token: str,
        token_amount: int,
        eth_amount: int,
        recipient: str,
        deadline: int
    ) -> bytes:
        """
        Encode addLiquidityETH.

        The minimums equal the desired amounts: the pool is being created in
        this bundle, so nothing should be refunded.
        """
        return selector(ADD_LIQUIDITY_ETH_SIG) + encode(
            ['address', 'uint256', 'uint256', 'uint256', 'address', 'uint256'],
            [
                Web3.to_checksum_address(token),
                token_amount,
                token_amount,
                eth_amount,
                Web3.to_checksum_address(recipient),
                deadline,
            ]
        )

    def swap_exact_eth_for_tokens(self, token: str, min_out: int, recipient: str, deadline: int) -> bytes:
        return selector(SWAP_EXACT_ETH_FOR_TOKENS_SIG) + encode(
            ['uint256', 'address[]', 'address', 'uint256'],
            [min_out, self.path_to(token), Web3.to_checksum_address(recipient), deadline]
        )

    def swap_exact_tokens_for_eth(
        self,
        token: str,
        amount_in: int,
        min_out: int,
        recipient: str,
        deadline: int
    ) -> bytes:
        return selector(SWAP_EXACT_TOKENS_FOR_ETH_SIG) + encode(
            ['uint256', 'uint256', 'address[]', 'address', 'uint256'],
            [amount_in, min_out, self.path_from(token), Web3.to_checksum_address(recipient), deadline]
        )

    def path_to(self, token: str) -> List[str]:
        return [self.weth, Web3.to_checksum_address(token)]

    def path_from(self, token: str) -> List[str]:
        return [Web3.to_checksum_address(token), self.weth]
