#!/usr/bin/env python3
"""
Block 0 Bundler CLI
===================

Provides commands for:
- Generating buyer wallets
- Funding them in one bundle from a funding wallet
- Launching: liquidity add + one buy per wallet in a single atomic bundle
- Selling every wallet's tokens
- Monitoring settlement of a submitted bundle

Usage:
    python bundler_cli.py generate --count 10
    python bundler_cli.py fund --amount 0.05
    python bundler_cli.py launch
    python bundler_cli.py sell --token 0x...
    python bundler_cli.py monitor --bundle-hash 0x...
"""

import sys
import json
import getpass
import argparse
from pathlib import Path
from typing import List, Optional

from cryptography.fernet import InvalidToken
from eth_account import Account
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box
from rich.progress import Progress, SpinnerColumn, TextColumn

from config import BundlerConfig, ConfigManager
from bundle_engine import BundlerSession, Bundle, BundleHandle, LaunchPlan, SettlementReport, TxKind
from logging_utils import metrics
from wallets import generate_wallets, save_wallets, load_wallets
from utils import (
    setup_logging,
    format_address,
    format_tx_hash,
    format_wei,
    normalize_private_key,
    parse_amount,
    sanitize_error_message,
    to_base_units,
    validate_address,
    validate_private_key,
    BundlerError,
)

console = Console()


def print_banner():
    """Print the CLI banner."""
    banner = """
    Block 0 Bundler
    ═══════════════
    Liquidity + distributed buys in one atomic bundle
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def load_config(args) -> BundlerConfig:
    """Config file, then BUNDLER_* environment, then command-line flags."""
    config = ConfigManager(Path(args.config)).load()
    if args.rpc:
        config.rpc_url = args.rpc
    if args.relay:
        config.relay_url = args.relay
    if args.wallet_file:
        config.wallet_file = args.wallet_file
    if args.dry_run:
        config.dry_run = True
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_file)
    return config


def ask(prompt: str) -> str:
    return input(prompt).strip()


def ask_key(prompt: str) -> str:
    """Prompt for a private key without echo; accepts it with or without 0x."""
    console.print(f"[yellow]{prompt}[/yellow]")
    key = normalize_private_key(getpass.getpass("> "))
    if not validate_private_key(key):
        raise ValueError("Invalid private key format")
    return key


def ask_amount(prompt: str) -> str:
    raw = ask(prompt)
    parse_amount(raw)
    return raw


def funding_key(args) -> str:
    """Stored encrypted key when --use-stored-key is given, otherwise a prompt."""
    if getattr(args, "use_stored_key", False):
        password = getpass.getpass("Config password: ")
        try:
            return ConfigManager(Path(args.config)).load_funding_key(password)
        except InvalidToken:
            raise ValueError("Failed to decrypt funding key - wrong password?")
    return ask_key("Enter funding wallet private key:")


def open_session(config: BundlerConfig) -> BundlerSession:
    session = BundlerSession(config)
    if not session.chain.is_connected():
        session.close()
        raise BundlerError(f"Failed to connect to RPC at {config.rpc_url}")
    return session


def print_bundle(bundle: Bundle, title: str):
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Kind", style="white")
    table.add_column("From", style="dim")
    table.add_column("Nonce", justify="right")
    table.add_column("To", style="dim")
    table.add_column("Value (ETH)", style="green", justify="right")

    for i, tx in enumerate(bundle):
        table.add_row(
            str(i),
            tx.kind.value,
            format_address(tx.sender),
            str(tx.nonce),
            format_address(tx.to),
            format_wei(tx.value),
        )
    console.print(table)


def print_report(report: SettlementReport):
    table = Table(title=f"Settlement of {format_tx_hash(report.bundle_hash)}", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Kind", style="white")
    table.add_column("Tx", style="dim")
    table.add_column("Status", style="white")
    table.add_column("Block", justify="right")
    table.add_column("Gas", justify="right")

    stale = {id(r) for r in report.stale}
    for record in report.records:
        if record.is_confirmed:
            status = "[green]✓ confirmed[/green]" if record.succeeded else "[red]✗ reverted[/red]"
        elif id(record) in stale:
            status = "[red]stale nonce[/red]"
        else:
            status = "[yellow]pending[/yellow]"
        table.add_row(
            str(record.position),
            record.kind.value,
            format_tx_hash(record.tx_hash),
            status,
            str(record.block_number or "-"),
            str(record.gas_used or "-"),
        )
    console.print(table)

    buys = report.by_kind(TxKind.BUY)
    if buys:
        landed = sum(1 for r in buys if r.is_confirmed and r.succeeded)
        console.print(f"Buys landed: {landed}/{len(buys)}")

    if report.timed_out:
        console.print(f"[yellow]Timed out with {len(report.pending)} transaction(s) still pending[/yellow]")


def generate_command(args) -> int:
    """Handle generate command - create and save buyer wallets."""
    config = load_config(args)
    accounts = generate_wallets(args.count)
    save_wallets(config.wallet_file, accounts)

    table = Table(title=f"Generated {len(accounts)} Wallets", box=box.ROUNDED)
    table.add_column("#", style="cyan")
    table.add_column("Address", style="green")
    for i, account in enumerate(accounts, start=1):
        table.add_row(str(i), account.address)
    console.print(table)
    console.print(f"\n[green]✓ Wallets saved to: {config.wallet_file}[/green]")
    console.print("[dim]  This file holds raw private keys - keep it secure[/dim]")
    return 0


def run_funding(session: BundlerSession, funder, accounts: List, amount: str) -> Optional[BundleHandle]:
    amount_wei = to_base_units(amount)
    balance = session.chain.eth_balance(funder.address)
    console.print(f"Funding wallet: {funder.address}")
    console.print(f"Balance: {format_wei(balance)} ETH")
    console.print(f"Wallets to fund: {len(accounts)} x {amount} ETH")

    bundle = session.assembler.assemble_funding(funder, accounts, amount_wei)
    print_bundle(bundle, "Funding Bundle")

    handle = session.submit(bundle)
    if handle is None:
        console.print("[yellow][DRY RUN] Funding bundle not sent[/yellow]")
        return None
    console.print(f"[green]✓ Funding bundle hash: {handle.bundle_hash}[/green]")
    return handle


def fund_command(args) -> int:
    """Handle fund command - fund saved wallets in one bundle."""
    print_banner()
    config = load_config(args)
    accounts = load_wallets(config.wallet_file)
    funder = Account.from_key(funding_key(args))

    with open_session(config) as session:
        handle = run_funding(session, funder, accounts, args.amount)
        if handle and args.wait:
            print_report(session.monitor(handle))
    return 0


def launch_command(args) -> int:
    """Handle launch command - the interactive generate/fund/launch flow."""
    print_banner()
    config = load_config(args)

    with open_session(config) as session:
        if args.use_existing:
            accounts = load_wallets(config.wallet_file)
            console.print(f"Loaded {len(accounts)} wallets from {config.wallet_file}")
        else:
            console.print("\n[bold]=== Wallet Generation ===[/bold]")
            count_raw = ask("Number of wallets to generate? ")
            if not count_raw.isdigit() or int(count_raw) <= 0:
                raise ValueError("Please enter a valid number greater than 0")
            accounts = generate_wallets(int(count_raw))
            save_wallets(config.wallet_file, accounts)
            console.print(f"Wallets saved to {config.wallet_file}")

            console.print("\n[bold]=== Funding Setup ===[/bold]")
            funder = Account.from_key(funding_key(args))
            per_wallet = ask_amount("ETH amount for each wallet: ")
            run_funding(session, funder, accounts, per_wallet)

        console.print("\n[bold]=== Token Setup ===[/bold]")
        dev = Account.from_key(ask_key("Enter dev wallet private key (wallet holding tokens):"))
        console.print(f"Dev wallet: {dev.address}")

        token = ask("Enter token contract address: ")
        if not validate_address(token):
            raise ValueError("Invalid token address")
        decimals = session.chain.token_decimals(token)
        console.print(f"Token decimals: {decimals}")

        token_amount = ask_amount("Enter amount of tokens to add to liquidity (can include commas): ")
        eth_liquidity = ask_amount("Enter amount of ETH to add to liquidity: ")
        per_buy = ask_amount("ETH amount per buy transaction: ")
        if parse_amount(per_buy) <= 0:
            raise ValueError("Invalid ETH amount for buys")

        plan = LaunchPlan(
            token_address=token,
            token_amount=to_base_units(token_amount, decimals),
            eth_amount=to_base_units(eth_liquidity),
            buy_amounts=[to_base_units(per_buy)],
        )

        def confirm(bundle: Bundle) -> bool:
            print_bundle(bundle, "Launch Bundle")
            answer = ask("Type 'SEND' to submit the bundle: ")
            return answer == "SEND"

        console.print("\nPreparing bundle transactions...")
        handle = session.launch(dev, accounts, plan, confirm=confirm)
        if handle is None:
            console.print("[yellow]Bundle not sent[/yellow]")
            return 0

        console.print(Panel(
            f"Token Address: {token}\n"
            f"LP Token Amount: {token_amount}\n"
            f"LP ETH Amount: {eth_liquidity}\n"
            f"Number of buy transactions: {len(accounts)}\n"
            f"ETH per buy: {per_buy}\n"
            f"Bundle Hash: {handle.bundle_hash}",
            title="Summary",
            border_style="cyan"
        ))

        if args.wait:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                          console=console) as progress:
                progress.add_task("Waiting for settlement...", total=None)
                report = session.monitor(handle, timeout=args.timeout)
            print_report(report)
            report.raise_for_stale()
    return 0


def sell_command(args) -> int:
    """Handle sell command - liquidate every saved wallet's token balance."""
    print_banner()
    config = load_config(args)
    if not validate_address(args.token):
        raise ValueError("Invalid token address")

    accounts = load_wallets(config.wallet_file)
    with open_session(config) as session:
        outcomes = session.sell_all(accounts, args.token)

    table = Table(title="Liquidation Results", box=box.ROUNDED)
    table.add_column("Wallet", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Bundle", style="dim")
    for outcome in outcomes:
        table.add_row(
            outcome.address,
            outcome.status,
            format_tx_hash(outcome.bundle_hash) if outcome.bundle_hash else "-",
        )
    console.print(table)
    return 0


def monitor_command(args) -> int:
    """Handle monitor command - track a bundle recorded in the bundle log."""
    config = load_config(args)
    log_path = Path(config.bundle_log)
    if not log_path.exists():
        raise FileNotFoundError(f"No bundle log at {log_path}")

    with open(log_path, 'r') as f:
        history = json.load(f)

    entries = [h for h in history if h['bundle_hash'] == args.bundle_hash] if args.bundle_hash else history[-1:]
    if not entries:
        raise ValueError(f"Bundle {args.bundle_hash} not found in {log_path}")

    handle = BundleHandle.from_dict(entries[-1])
    with open_session(config) as session:
        report = session.monitor(handle, timeout=args.timeout)
    print_report(report)
    report.raise_for_stale()
    return 0


def store_key_command(args) -> int:
    """Handle store-key command - keep the funding key encrypted in the config."""
    manager = ConfigManager(Path(args.config))
    config = manager.load()
    key = ask_key("Enter funding wallet private key:")
    password = getpass.getpass("Encryption password: ")
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters")
    if getpass.getpass("Confirm password: ") != password:
        raise ValueError("Passwords don't match")
    manager.store_funding_key(config, key, password)
    console.print(f"[green]✓ Funding key stored encrypted in {args.config}[/green]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Block 0 Bundler CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate 10 buyer wallets
  python bundler_cli.py generate --count 10

  # Fund them with 0.05 ETH each in one bundle
  python bundler_cli.py fund --amount 0.05

  # Interactive launch (generate, fund, add liquidity, buy)
  python bundler_cli.py launch --wait

  # Sell all tokens held by the generated wallets
  python bundler_cli.py sell --token 0x...
        """
    )

    # Global options
    parser.add_argument('--config', default='./bundler_config.yaml', help='Path to config file')
    parser.add_argument('--rpc', help='Read-state RPC URL')
    parser.add_argument('--relay', help='Bundle relay URL')
    parser.add_argument('--wallet-file', help='Generated wallet file')
    parser.add_argument('--dry-run', action='store_true', help='Build and sign but do not submit')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level')
    parser.add_argument('--metrics-file', help='Write relay and settlement timings to this JSON file')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    generate_parser = subparsers.add_parser('generate', help='Generate buyer wallets')
    generate_parser.add_argument('--count', type=int, default=10, help='Number of wallets')

    fund_parser = subparsers.add_parser('fund', help='Fund generated wallets in one bundle')
    fund_parser.add_argument('--amount', required=True, help='ETH per wallet')
    fund_parser.add_argument('--use-stored-key', action='store_true', help='Use the encrypted key from config')
    fund_parser.add_argument('--wait', action='store_true', help='Wait for settlement')

    launch_parser = subparsers.add_parser('launch', help='Interactive liquidity + buy launch')
    launch_parser.add_argument('--use-existing', action='store_true',
                               help='Use already funded wallets from the wallet file')
    launch_parser.add_argument('--use-stored-key', action='store_true', help='Use the encrypted key from config')
    launch_parser.add_argument('--wait', action='store_true', help='Wait for settlement')
    launch_parser.add_argument('--timeout', type=float, help='Settlement timeout in seconds')

    sell_parser = subparsers.add_parser('sell', help='Sell all tokens from generated wallets')
    sell_parser.add_argument('--token', required=True, help='Token contract address')

    monitor_parser = subparsers.add_parser('monitor', help='Track settlement of a submitted bundle')
    monitor_parser.add_argument('--bundle-hash', help='Bundle hash (default: last submitted)')
    monitor_parser.add_argument('--timeout', type=float, help='Settlement timeout in seconds')

    subparsers.add_parser('store-key', help='Store the funding key encrypted in the config')

    return parser


COMMANDS = {
    'generate': generate_command,
    'fund': fund_command,
    'launch': launch_command,
    'sell': sell_command,
    'monitor': monitor_command,
    'store-key': store_key_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except (BundlerError, ValueError, FileNotFoundError) as e:
        console.print(f"\n[red]Error: {sanitize_error_message(e)}[/red]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        return 1
    finally:
        summary = metrics.get_summary()
        if summary['total_operations']:
            console.print(f"[dim]Operations: {json.dumps(summary['operations'])}[/dim]")
            if args.metrics_file:
                metrics.save_to_file(args.metrics_file)


if __name__ == '__main__':
    sys.exit(main())
