"""
Unit tests for the operator command line.

Tests cover:
- Argument parsing and defaults
- Fallback address files
- authorize: nonce read from the contract, explicit override, signed output
  that recovers to the authority
- discover and migrate against in-memory collaborators
- Exit status for failures and configuration errors
"""

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from ledgershift import cli
from ledgershift.authorization.models import AuthorizationMessage
from ledgershift.authorization.signer import function_selector, recover_authority
from ledgershift.config import DEFAULT_SCAN_WINDOWS, DEFAULT_TRACKED_EVENTS
from ledgershift.ledger.in_memory import InMemoryLedger, InMemoryMigrationService
from tests.fixtures import (
    AUTHORITY_ADDRESS,
    AUTHORITY_KEY,
    CALLER_ADDRESS,
    CONTRACT_ADDRESS,
    DEPOSIT_OPERATION,
    FIXED_NOW,
    make_domain,
    participant_address,
    populate_ledger,
)

CONNECTION_ARGS = ["--contract", CONTRACT_ADDRESS, "--abi", "abi.json"]


def authorize_args(*extra: str) -> list[str]:
    return [
        "authorize",
        "--caller",
        CALLER_ADDRESS,
        "--operation",
        DEPOSIT_OPERATION,
        "--contract",
        CONTRACT_ADDRESS,
        "--domain-name",
        "MOVINEarnV2",
        "--domain-version",
        "2",
        "--chain-id",
        "31337",
        *extra,
    ]


@pytest.fixture
def collaborators(
    monkeypatch: pytest.MonkeyPatch,
    service: InMemoryMigrationService,
) -> tuple[InMemoryLedger, InMemoryMigrationService]:
    """Replace the web3 collaborators with an in-memory ledger and service."""
    ledger = InMemoryLedger(height=10_000)

    def build(args: Any, *, need_sender: bool) -> tuple[Any, Any]:
        return ledger, service if need_sender else None

    monkeypatch.setattr(cli, "build_collaborators", build)
    return ledger, service


class TestParser:
    """Tests for build_parser()."""

    def test_scan_defaults(self) -> None:
        args = cli.build_parser().parse_args(["discover", *CONNECTION_ARGS])
        assert args.windows == DEFAULT_SCAN_WINDOWS
        assert args.events == DEFAULT_TRACKED_EVENTS
        assert args.participant_field == "user"
        assert args.max_block_span is None

    def test_lists(self) -> None:
        args = cli.build_parser().parse_args(
            ["migrate", *CONNECTION_ARGS, "--windows", "500,5000", "--events", "Staked, Unstaked"]
        )
        assert args.windows == (500, 5000)
        assert args.events == ("Staked", "Unstaked")
        assert args.batch_size == 50
        assert not args.dry_run

    def test_invalid_windows(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["discover", *CONNECTION_ARGS, "--windows", "a,b"])

    def test_command_is_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_domain_version_is_required(self) -> None:
        argv = authorize_args()
        index = argv.index("--domain-version")
        del argv[index : index + 2]
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(argv)

    def test_nonce_is_read_by_default(self) -> None:
        args = cli.build_parser().parse_args(authorize_args())
        assert args.nonce is None
        assert args.ttl == 86_400


class TestFallbackFile:
    """Tests for read_fallback_file()."""

    def test_skips_comments_and_blank_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "fallback.txt"
        path.write_text(
            f"# operators\n\n{participant_address(0)}\n  {participant_address(1)}  \n",
            encoding="utf-8",
        )
        assert cli.read_fallback_file(path) == (participant_address(0), participant_address(1))


class TestAuthorize:
    """Tests for the authorize command."""

    @pytest.fixture
    def nonce_reader(
        self,
        monkeypatch: pytest.MonkeyPatch,
        service: InMemoryMigrationService,
    ) -> InMemoryMigrationService:
        """Serve nonces from the in-memory service instead of a contract."""
        monkeypatch.setattr(cli, "build_nonce_reader", lambda args: service)
        monkeypatch.setattr(cli.time, "time", lambda: FIXED_NOW)
        return service

    def test_prints_verifiable_authorization(
        self,
        nonce_reader: InMemoryMigrationService,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        nonce_reader.set_nonce(CALLER_ADDRESS, 7)

        status = cli.main(authorize_args("--authority-key", AUTHORITY_KEY, "--ttl", "60"))

        assert status == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["authority"] == AUTHORITY_ADDRESS
        assert payload["operation"] == DEPOSIT_OPERATION
        assert payload["domain"]["chain_id"] == 31337
        message = AuthorizationMessage(
            caller=payload["message"]["caller"],
            selector=payload["message"]["selector"],
            nonce=payload["message"]["nonce"],
            deadline=payload["message"]["deadline"],
        )
        assert message.nonce == 7
        assert message.deadline == FIXED_NOW + 60
        assert message.selector == function_selector(DEPOSIT_OPERATION)
        signature = bytes.fromhex(payload["signature"][2:])
        assert recover_authority(make_domain(), message, signature) == AUTHORITY_ADDRESS

    def test_nonce_is_read_on_every_invocation(
        self,
        nonce_reader: InMemoryMigrationService,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        argv = authorize_args("--authority-key", AUTHORITY_KEY)
        nonces = []
        for nonce in (3, 4):
            nonce_reader.set_nonce(CALLER_ADDRESS, nonce)
            assert cli.main(argv) == 0
            nonces.append(json.loads(capsys.readouterr().out)["message"]["nonce"])

        assert nonces == [3, 4]

    def test_nonce_override_skips_the_contract(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        def no_reader(args: Any) -> Any:
            raise AssertionError("nonce reader must not be built")

        monkeypatch.setattr(cli, "build_nonce_reader", no_reader)
        monkeypatch.setattr(cli.time, "time", lambda: FIXED_NOW)

        with caplog.at_level("WARNING", logger="ledgershift.cli"):
            status = cli.main(authorize_args("--authority-key", AUTHORITY_KEY, "--nonce", "5"))

        assert status == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["message"]["nonce"] == 5
        assert payload["message"]["deadline"] == FIXED_NOW + 86_400
        assert "operator-supplied nonce 5" in caplog.text

    def test_nonce_read_failure(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        reader = AsyncMock()
        reader.get_nonce.side_effect = ConnectionError("refused")
        monkeypatch.setattr(cli, "build_nonce_reader", lambda args: reader)

        assert cli.main(authorize_args("--authority-key", AUTHORITY_KEY)) == 1
        assert "Could not read nonce" in capsys.readouterr().err

    def test_missing_abi_without_nonce(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setattr("ledgershift.ledger.EVM_AVAILABLE", True)

        argv = authorize_args("--authority-key", AUTHORITY_KEY, "--rpc-url", "http://node:8545")

        assert cli.main(argv) == 1
        assert "no contract ABI" in capsys.readouterr().err

    def test_missing_authority_key(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.delenv(cli.AUTHORITY_KEY_ENV, raising=False)

        status = cli.main(authorize_args("--authority-key", "", "--nonce", "5"))

        assert status == 1
        assert "no authority key" in capsys.readouterr().err

    def test_invalid_operation(self, capsys: pytest.CaptureFixture[str]) -> None:
        argv = authorize_args("--authority-key", AUTHORITY_KEY, "--nonce", "5")
        argv[argv.index(DEPOSIT_OPERATION)] = "deposit"

        assert cli.main(argv) == 1
        assert "error:" in capsys.readouterr().err

    def test_malformed_caller(self, capsys: pytest.CaptureFixture[str]) -> None:
        argv = authorize_args("--authority-key", AUTHORITY_KEY, "--nonce", "5")
        argv[argv.index(CALLER_ADDRESS)] = "0x1234"

        assert cli.main(argv) == 1
        assert "error:" in capsys.readouterr().err


class TestDiscover:
    """Tests for the discover command."""

    def test_text_output(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        ledger, _ = collaborators
        participants = populate_ledger(ledger, 3, block_number=9_900)

        assert cli.main(["discover", *CONNECTION_ARGS]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "Discovery: found (3 participants)"
        assert lines[1:] == participants

    def test_json_output(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        ledger, _ = collaborators
        participants = populate_ledger(ledger, 2, block_number=9_900)

        assert cli.main(["discover", *CONNECTION_ARGS, "--json"]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["status"] == "found"
        assert payload["participants"] == participants

    def test_fallback_file(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
        tmp_path: Path,
    ) -> None:
        path = tmp_path / "fallback.txt"
        path.write_text(participant_address(4) + "\n", encoding="utf-8")

        assert cli.main(["discover", *CONNECTION_ARGS, "--fallback-file", str(path)]) == 0

        assert "Discovery: fallback (1 participants)" in capsys.readouterr().out

    def test_missing_fallback_file(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        tmp_path: Path,
    ) -> None:
        missing = tmp_path / "missing.txt"
        assert cli.main(["discover", *CONNECTION_ARGS, "--fallback-file", str(missing)]) == 1


class TestMigrate:
    """Tests for the migrate command."""

    def test_successful_migration(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        ledger, service = collaborators
        populate_ledger(ledger, 120, block_number=9_990, service=service)

        assert cli.main(["migrate", *CONNECTION_ARGS]) == 0

        out = capsys.readouterr().out
        assert "Result: SUCCESS" in out
        assert "Total users: 120" in out
        assert service.migrated_count == 120

    def test_partial_failure_exits_nonzero(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        ledger, service = collaborators
        populate_ledger(ledger, 120, block_number=9_990)
        service.fail_call(2)

        assert cli.main(["migrate", *CONNECTION_ARGS, "--json"]) == 1

        payload = json.loads(capsys.readouterr().out)
        assert payload["result"] == "partial_failure"
        assert payload["total_successes"] == 70
        assert payload["total_failures"] == 50

    def test_no_data_exits_zero(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        assert cli.main(["migrate", *CONNECTION_ARGS]) == 0
        assert "Result: NO_DATA" in capsys.readouterr().out

    def test_dry_run(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        ledger, service = collaborators
        populate_ledger(ledger, 60, block_number=9_990)

        assert cli.main(["migrate", *CONNECTION_ARGS, "--dry-run"]) == 0

        out = capsys.readouterr().out
        assert "Result: DRY RUN" in out
        assert "Batches: 0/2 executed, 0 failed" in out
        assert service.migration_calls == []

    def test_invalid_batch_size(
        self,
        collaborators: tuple[InMemoryLedger, InMemoryMigrationService],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        assert cli.main(["migrate", *CONNECTION_ARGS, "--batch-size", "0"]) == 1
        assert "batch_size must be positive" in capsys.readouterr().err

    def test_missing_endpoint(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setattr("ledgershift.ledger.EVM_AVAILABLE", True)

        assert cli.main(["discover", *CONNECTION_ARGS, "--rpc-url", ""]) == 1
        assert "no JSON-RPC endpoint" in capsys.readouterr().err
