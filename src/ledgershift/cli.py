"""
Operator command line.

Commands:
    discover   Scan the ledger and print the discovered participants
    migrate    Discover, plan and migrate participants, then print the report
    authorize  Read the caller's next nonce from the contract, sign an
               authorization for one privileged call and print it

Connection settings come from arguments or the environment:
    WEB3_PROVIDER_URI           JSON-RPC endpoint
    LEDGERSHIFT_PRIVATE_KEY     key that sends migration transactions
    LEDGERSHIFT_AUTHORITY_KEY   key that co-signs privileged calls

Exit status is 0 on success and 1 on configuration errors or when a
migration leaves participants unmigrated.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ledgershift.authorization.flow import PrivilegedCallFlow
from ledgershift.authorization.signer import AuthorizationSigner, LocalAccountAuthority
from ledgershift.config import (
    DEFAULT_AUTHORIZATION_TTL_SECONDS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_SCAN_WINDOWS,
    DEFAULT_TRACKED_EVENTS,
    DEFAULT_VERIFICATION_SAMPLE_SIZE,
    AuthorizationConfig,
    DomainSeparator,
    ExecutionConfig,
    OrchestratorConfig,
    ScanConfig,
)
from ledgershift.exceptions import InvalidConfigurationError, LedgerShiftError
from ledgershift.ledger.interface import LedgerClient, MigrationService
from ledgershift.migration.models import RunResult
from ledgershift.migration.orchestrator import MigrationOrchestrator
from ledgershift.migration.reporter import MigrationReporter
from ledgershift.migration.repositories.run_log import RunRecordRepository
from ledgershift.migration.scanner import EventScanner
from ledgershift.serialization import json_dumps

logger = logging.getLogger(__name__)

PROVIDER_ENV = "WEB3_PROVIDER_URI"
PRIVATE_KEY_ENV = "LEDGERSHIFT_PRIVATE_KEY"
AUTHORITY_KEY_ENV = "LEDGERSHIFT_AUTHORITY_KEY"

SUCCESSFUL_RESULTS = frozenset({RunResult.SUCCESS, RunResult.NO_DATA})


def _int_list(value: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected comma-separated integers, got {value!r}") from e


def _str_list(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def read_fallback_file(path: str | Path) -> tuple[str, ...]:
    """
    Read operator-supplied participant addresses, one per line.

    Blank lines and lines starting with '#' are ignored. Addresses are
    validated later by ScanConfig.
    """
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return tuple(
        line.strip() for line in lines if line.strip() and not line.strip().startswith("#")
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledgershift",
        description="Migrate participants between service versions and co-sign privileged calls.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    connection = argparse.ArgumentParser(add_help=False)
    connection.add_argument(
        "--rpc-url",
        default=os.environ.get(PROVIDER_ENV),
        help=f"JSON-RPC endpoint (default: ${PROVIDER_ENV})",
    )
    connection.add_argument("--contract", required=True, help="Service contract address")
    connection.add_argument(
        "--abi", required=True, help="Contract ABI file (ABI list or compiler artifact)"
    )
    connection.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CALL_TIMEOUT_SECONDS,
        help=f"Per-call timeout in seconds (default: {DEFAULT_CALL_TIMEOUT_SECONDS:g})",
    )

    scanning = argparse.ArgumentParser(add_help=False)
    scanning.add_argument(
        "--windows",
        type=_int_list,
        default=DEFAULT_SCAN_WINDOWS,
        help="Comma-separated lookback windows in blocks (default: 1000,10000,100000)",
    )
    scanning.add_argument(
        "--events",
        type=_str_list,
        default=DEFAULT_TRACKED_EVENTS,
        help="Comma-separated event kinds to scan",
    )
    scanning.add_argument(
        "--participant-field", default="user", help="Event field holding the participant"
    )
    scanning.add_argument(
        "--max-block-span", type=int, default=None, help="Largest block range per log query"
    )
    scanning.add_argument(
        "--fallback-file",
        default=None,
        help="Addresses to migrate when discovery finds nothing (degraded mode)",
    )
    scanning.add_argument("--json", action="store_true", help="Print JSON instead of text")

    subparsers.add_parser(
        "discover",
        parents=[connection, scanning],
        help="Scan the ledger for participants",
    )

    migrate = subparsers.add_parser(
        "migrate",
        parents=[connection, scanning],
        help="Discover and migrate participants",
    )
    migrate.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Participants per batch (default: {DEFAULT_BATCH_SIZE})",
    )
    migrate.add_argument(
        "--sample-size",
        type=int,
        default=DEFAULT_VERIFICATION_SAMPLE_SIZE,
        help="Participants verified per batch (default: 3)",
    )
    migrate.add_argument(
        "--dry-run", action="store_true", help="Stop after planning; submit nothing"
    )
    migrate.add_argument(
        "--private-key",
        default=os.environ.get(PRIVATE_KEY_ENV),
        help=f"Sender key (default: ${PRIVATE_KEY_ENV})",
    )
    migrate.add_argument(
        "--record-db", default=None, help="SQLite file to append the run record to"
    )

    authorize = subparsers.add_parser(
        "authorize", help="Sign an authorization for one privileged call"
    )
    authorize.add_argument("--caller", required=True, help="Address performing the call")
    authorize.add_argument(
        "--operation",
        required=True,
        help='Canonical function signature, e.g. "deposit(uint256,uint256,uint256,bytes)"',
    )
    authorize.add_argument("--contract", required=True, help="Verifying contract address")
    authorize.add_argument("--domain-name", required=True, help="EIP-712 domain name")
    authorize.add_argument(
        "--domain-version", required=True, help="EIP-712 domain version of the deployment"
    )
    authorize.add_argument("--chain-id", type=int, required=True, help="Chain id of the domain")
    authorize.add_argument(
        "--rpc-url",
        default=os.environ.get(PROVIDER_ENV),
        help=f"JSON-RPC endpoint the nonce is read from (default: ${PROVIDER_ENV})",
    )
    authorize.add_argument("--abi", default=None, help="Contract ABI file with getNonce")
    authorize.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CALL_TIMEOUT_SECONDS,
        help=f"Nonce lookup timeout in seconds (default: {DEFAULT_CALL_TIMEOUT_SECONDS:g})",
    )
    authorize.add_argument(
        "--nonce",
        type=int,
        default=None,
        help="Override the nonce instead of reading it from the contract",
    )
    authorize.add_argument(
        "--ttl",
        type=int,
        default=DEFAULT_AUTHORIZATION_TTL_SECONDS,
        help="Seconds until the authorization expires (default: 86400)",
    )
    authorize.add_argument(
        "--authority-key",
        default=os.environ.get(AUTHORITY_KEY_ENV),
        help=f"Authority key (default: ${AUTHORITY_KEY_ENV})",
    )
    return parser


def scan_config_from_args(args: argparse.Namespace) -> ScanConfig:
    fallback = read_fallback_file(args.fallback_file) if args.fallback_file else ()
    return ScanConfig(
        windows=tuple(args.windows),
        tracked_events=tuple(args.events),
        participant_field=args.participant_field,
        max_block_span=args.max_block_span,
        fallback_participants=fallback,
    )


def _connect(args: argparse.Namespace) -> tuple[Any, list[dict[str, Any]]]:
    from ledgershift.ledger import EVM_AVAILABLE

    if not EVM_AVAILABLE:
        raise InvalidConfigurationError("web3 is not installed; install ledgershift[evm]")
    if not args.rpc_url:
        raise InvalidConfigurationError(
            f"no JSON-RPC endpoint; pass --rpc-url or set {PROVIDER_ENV}", "rpc_url"
        )
    if not args.abi:
        raise InvalidConfigurationError("no contract ABI; pass --abi", "abi")

    from web3 import AsyncHTTPProvider, AsyncWeb3

    from ledgershift.ledger.evm import load_abi

    abi = load_abi(json.loads(Path(args.abi).read_text(encoding="utf-8")))
    return AsyncWeb3(AsyncHTTPProvider(args.rpc_url)), abi


def build_collaborators(
    args: argparse.Namespace, *, need_sender: bool
) -> tuple[LedgerClient, MigrationService | None]:
    """
    Connect to the ledger named by args.

    Returns:
        (ledger, service); service is None when need_sender is False

    Raises:
        InvalidConfigurationError: On missing endpoint, ABI, key or web3
    """
    w3, abi = _connect(args)

    from eth_account import Account

    from ledgershift.ledger.evm import EvmLedger, EvmMigrationService

    ledger = EvmLedger(w3, args.contract, abi)
    if not need_sender:
        return ledger, None
    if not args.private_key:
        raise InvalidConfigurationError(
            f"no sender key; pass --private-key or set {PRIVATE_KEY_ENV}", "private_key"
        )
    account = Account.from_key(args.private_key)
    service = EvmMigrationService(
        w3, args.contract, abi, account, receipt_timeout_seconds=args.timeout
    )
    return ledger, service


def build_nonce_reader(args: argparse.Namespace) -> MigrationService:
    """
    Connect a read-only service used to look up the caller's next nonce.

    Raises:
        InvalidConfigurationError: On missing endpoint, ABI or web3
    """
    w3, abi = _connect(args)

    from ledgershift.ledger.evm import EvmMigrationService

    return EvmMigrationService(w3, args.contract, abi)


async def _discover(args: argparse.Namespace) -> int:
    config = scan_config_from_args(args)
    ledger, _ = build_collaborators(args, need_sender=False)
    scanner = EventScanner(ledger, config, call_timeout_seconds=args.timeout)
    result = await scanner.discover()
    if args.json:
        payload = result.to_dict()
        payload["participants"] = result.participants.to_list()
        print(json_dumps(payload, indent=2))
    else:
        print(f"Discovery: {result.status.value} ({len(result.participants)} participants)")
        for participant in result.participants:
            print(participant)
    return 0


async def _open_repository(path: str) -> tuple[RunRecordRepository, Any]:
    import aiosqlite

    from ledgershift.migration.repositories.run_log import SQLiteRunRecordRepository

    connection = await aiosqlite.connect(path)
    repository = SQLiteRunRecordRepository(connection)
    await repository.initialize()
    return repository, connection


async def _migrate(args: argparse.Namespace) -> int:
    config = OrchestratorConfig(
        scan=scan_config_from_args(args),
        execution=ExecutionConfig(
            batch_size=args.batch_size,
            verification_sample_size=args.sample_size,
            call_timeout_seconds=args.timeout,
        ),
    )
    ledger, service = build_collaborators(args, need_sender=not args.dry_run)

    repository = None
    connection = None
    if args.record_db and not args.dry_run:
        repository, connection = await _open_repository(args.record_db)
    try:
        orchestrator = MigrationOrchestrator(
            ledger,
            service,  # type: ignore[arg-type]
            config,
            repository=repository,
        )
        summary = await orchestrator.run(dry_run=args.dry_run)
    finally:
        if connection is not None:
            await connection.close()

    reporter = MigrationReporter()
    print(reporter.to_json(summary) if args.json else reporter.render_text(summary))
    if args.dry_run:
        return 0
    return 0 if summary.result in SUCCESSFUL_RESULTS else 1


async def _authorize(args: argparse.Namespace) -> int:
    if not args.authority_key:
        raise InvalidConfigurationError(
            f"no authority key; pass --authority-key or set {AUTHORITY_KEY_ENV}", "authority_key"
        )
    domain = DomainSeparator(
        name=args.domain_name,
        version=args.domain_version,
        chain_id=args.chain_id,
        verifying_contract=args.contract,
    )
    config = AuthorizationConfig(domain, ttl_seconds=args.ttl, call_timeout_seconds=args.timeout)
    signer = AuthorizationSigner(LocalAccountAuthority(args.authority_key), domain)

    if args.nonce is None:
        flow = PrivilegedCallFlow(build_nonce_reader(args), signer, config, clock=time.time)
        attempt = await flow.prepare(args.caller, args.operation)
        signed = flow.sign(attempt)
    else:
        logger.warning(
            "Signing with operator-supplied nonce %d; the contract's counter was not read",
            args.nonce,
        )
        message = signer.create_message(
            caller=args.caller,
            operation=args.operation,
            nonce=args.nonce,
            deadline=int(time.time()) + config.ttl_seconds,
        )
        signed = signer.sign(message)

    payload = signed.to_dict()
    payload["operation"] = args.operation
    payload["domain"] = domain.to_dict()
    print(json_dumps(payload, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "discover":
            return asyncio.run(_discover(args))
        if args.command == "migrate":
            return asyncio.run(_migrate(args))
        return asyncio.run(_authorize(args))
    except (LedgerShiftError, ValueError, OSError) as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1


__all__ = [
    "build_collaborators",
    "build_nonce_reader",
    "build_parser",
    "main",
    "read_fallback_file",
]
