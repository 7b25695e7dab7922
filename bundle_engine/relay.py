"""
Relay Submission
================

Sends a bundle to a block-builder endpoint with eth_sendBundle.

Request:
    {"jsonrpc": "2.0", "id": 1, "method": "eth_sendBundle",
     "params": [{"txs": [...], "blockNumber": "0x0"}]}

"0x0" leaves the target block unset (next available block). Pass an
explicit block number to target it.
"""

import json
import re
from typing import Any, Dict, Optional

import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from config import BundlerConfig
from logging_utils import MetricsCollector, timed_operation
from .models import Bundle, BundleHandle
from utils import (
    logger,
    format_tx_hash,
    sanitize_error_message,
    RelayRejectedError,
    RelayUnavailableError,
    StaleNonceError,
)

UNSET_BLOCK = "0x0"

# Relay error messages that mean a nonce in the bundle is already used
STALE_NONCE_PATTERN = re.compile(r"nonce too low|nonce.*already used", re.IGNORECASE)


class RelaySubmitter:
    """Submits bundles and interprets the relay's JSON-RPC response."""

    def __init__(
        self,
        config: BundlerConfig,
        session: Optional[requests.Session] = None,
        collector: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.url = config.relay_url
        self.timeout = config.relay_timeout_seconds
        self.session = session or requests.Session()
        self.collector = collector
        self._auth_account = Account.from_key(config.relay_auth_key) if config.relay_auth_key else None
        self._request_id = 0

    def build_payload(self, bundle: Bundle, target_block: Optional[int] = None) -> Dict[str, Any]:
        self._request_id += 1
        return {
            'jsonrpc': '2.0',
            'id': self._request_id,
            'method': 'eth_sendBundle',
            'params': [{
                'txs': bundle.raw_transactions(),
                'blockNumber': hex(target_block) if target_block is not None else UNSET_BLOCK,
            }],
        }

    def _headers(self, body: str) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self._auth_account is not None:
            # Flashbots-style: sign the hex keccak of the body as a personal message
            digest = Web3.to_hex(Web3.keccak(text=body))
            signature = self._auth_account.sign_message(encode_defunct(text=digest)).signature
            headers['X-Flashbots-Signature'] = f"{self._auth_account.address}:{Web3.to_hex(signature)}"
        return headers

    def submit(self, bundle: Bundle, target_block: Optional[int] = None) -> BundleHandle:
        """
        Submit the bundle as one atomic unit.

        Raises:
            RelayRejectedError: The relay returned an error object
            StaleNonceError: The relay says a nonce in the bundle is used
            RelayUnavailableError: Timeout, refused connection, or non-JSON reply
        """
        payload = self.build_payload(bundle, target_block)
        body = json.dumps(payload)

        logger.info(f"Sending {bundle.label} bundle ({len(bundle)} txs) to relay")

        with timed_operation("relay_submit", self.collector, {'label': bundle.label}) as metric:
            metric.tx_count = len(bundle)
            data = self._post(body)
            bundle_hash = self._interpret(data, bundle)
            metric.bundle_hash = bundle_hash

        logger.info(f"Bundle accepted: {format_tx_hash(bundle_hash)}")
        return BundleHandle(bundle_hash=bundle_hash, bundle=bundle, target_block=target_block)

    def _post(self, body: str) -> Dict[str, Any]:
        try:
            response = self.session.post(self.url, data=body, headers=self._headers(body), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RelayUnavailableError(f"Relay timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise RelayUnavailableError(f"Relay unreachable: {sanitize_error_message(e)}") from e

        try:
            data = response.json()
        except ValueError as e:
            text = (response.text or "")[:200]
            raise RelayUnavailableError(
                f"Relay returned non-JSON response (HTTP {response.status_code}): {text}"
            ) from e

        if not isinstance(data, dict):
            raise RelayUnavailableError(f"Relay returned unexpected JSON: {str(data)[:200]}")
        return data

    def _interpret(self, data: Dict[str, Any], bundle: Bundle) -> str:
        error = data.get('error')
        if error:
            if isinstance(error, dict):
                code, message = error.get('code'), str(error.get('message', ''))
            else:
                code, message = None, str(error)

            logger.error(f"Bundle Error: {json.dumps(error)}")

            if STALE_NONCE_PATTERN.search(message):
                raise StaleNonceError(f"Relay rejected a used nonce: {message}")
            raise RelayRejectedError(
                f"Bundle Error: {message or error}",
                code=code,
                payload=error if isinstance(error, dict) else {'message': message},
            )

        result = data.get('result')
        if isinstance(result, dict) and result.get('bundleHash'):
            return result['bundleHash']
        if isinstance(result, str) and result:
            return result

        raise RelayRejectedError(
            "Relay response carried neither a bundle hash nor an error",
            payload=data,
        )
