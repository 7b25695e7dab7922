"""
Tests for the bundler CLI entry points that need no network.

Run with: pytest tests/ -v
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import bundler_cli
from wallets import save_wallets, generate_wallets


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def base_args(tmp_path):
    return ['--config', str(tmp_path / "bundler_config.yaml"), '--wallet-file', str(tmp_path / "wallets.json")]


def test_parser_subcommands():
    parser = bundler_cli.build_parser()

    args = parser.parse_args(['--dry-run', 'sell', '--token', '0xabc'])
    assert args.command == 'sell'
    assert args.dry_run is True
    assert args.token == '0xabc'

    args = parser.parse_args(['launch', '--use-existing', '--wait', '--timeout', '60'])
    assert args.use_existing and args.wait
    assert args.timeout == 60.0

    args = parser.parse_args(['fund', '--amount', '0.05'])
    assert args.amount == '0.05'


def test_no_command_prints_help():
    assert bundler_cli.main([]) == 1


def test_generate_writes_wallet_file(workdir):
    assert bundler_cli.main(base_args(workdir) + ['generate', '--count', '3']) == 0

    data = json.loads((workdir / "wallets.json").read_text())
    assert len(data) == 3
    assert set(data[0]) == {"address", "privateKey"}


def test_generate_rejects_zero(workdir):
    assert bundler_cli.main(base_args(workdir) + ['generate', '--count', '0']) == 1


def test_sell_rejects_invalid_token(workdir):
    assert bundler_cli.main(base_args(workdir) + ['sell', '--token', 'not-a-token']) == 1


def test_monitor_without_log(workdir):
    assert bundler_cli.main(base_args(workdir) + ['monitor']) == 1


def test_fund_without_wallets(workdir):
    assert bundler_cli.main(base_args(workdir) + ['fund', '--amount', '0.01']) == 1


def test_flags_override_config(workdir):
    args = bundler_cli.build_parser().parse_args(
        base_args(workdir) + ['--rpc', 'http://localhost:8545', '--log-level', 'DEBUG', '--dry-run', 'generate']
    )
    config = bundler_cli.load_config(args)

    assert config.rpc_url == 'http://localhost:8545'
    assert config.wallet_file == str(workdir / "wallets.json")
    assert config.log_level == 'DEBUG'
    assert config.dry_run is True


def test_sell_reads_wallet_file(workdir, monkeypatch):
    save_wallets(str(workdir / "wallets.json"), generate_wallets(2))
    calls = {}

    class FakeSession:
        def __init__(self, config):
            self.config = config

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def sell_all(self, accounts, token):
            calls['accounts'] = accounts
            calls['token'] = token
            return []

    monkeypatch.setattr(bundler_cli, "open_session", lambda config: FakeSession(config))
    token = "0x" + "12" * 20

    assert bundler_cli.main(base_args(workdir) + ['sell', '--token', token]) == 0
    assert len(calls['accounts']) == 2
    assert calls['token'] == token


def test_funding_key_prompts_without_stored_key(monkeypatch):
    monkeypatch.setattr(bundler_cli, "ask_key", lambda prompt: "0x" + "11" * 32)
    args = bundler_cli.build_parser().parse_args(['fund', '--amount', '0.01'])

    assert bundler_cli.funding_key(args) == "0x" + "11" * 32
