"""
EVM adapters for LedgerClient and MigrationService over web3's AsyncWeb3.

EvmLedger reads historical logs with ``eth_getLogs`` and decodes them
against the service contract's ABI. EvmMigrationService signs transactions
locally with an eth-account key, sends them raw and waits for receipts.

The contract ABI is supplied by the caller (a list, or a compiler artifact
with an "abi" member); nothing about the service contract is hard-coded
except the bulk migration entry point and its result event.

Example:
    >>> from web3 import AsyncHTTPProvider, AsyncWeb3
    >>> w3 = AsyncWeb3(AsyncHTTPProvider(os.environ["WEB3_PROVIDER_URI"]))
    >>> ledger = EvmLedger(w3, contract_address, abi)
    >>> service = EvmMigrationService(w3, contract_address, abi, account)

Note:
    Requires the ``evm`` extra (web3).
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from eth_account.signers.local import LocalAccount
from eth_utils import event_abi_to_log_topic, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.logs import DISCARD

from ledgershift.authorization.models import SignedAuthorization
from ledgershift.exceptions import (
    AuthorizationError,
    ExpiredAuthorizationError,
    InvalidConfigurationError,
    LedgerQueryError,
    ServiceCallError,
    StaleNonceError,
)
from ledgershift.ledger.interface import (
    EventFilter,
    LedgerClient,
    LedgerEvent,
    MigrationReceipt,
    MigrationResultEvent,
    MigrationService,
    ParticipantSnapshot,
    PrivilegedCallReceipt,
    ReceiptStatus,
)
from ledgershift.participants import normalize_address

logger = logging.getLogger(__name__)

BULK_MIGRATE_FUNCTION = "bulkMigrateUserData"
RESULT_EVENT = "BulkMigrationCompleted"
NONCE_FUNCTION = "getNonce"
STAKES_FUNCTION = "getUserStakes"
ACTIVITY_FUNCTION = "userActivities"
PREMIUM_FUNCTION = "getIsPremiumUser"

DEFAULT_RECEIPT_TIMEOUT_SECONDS = 120.0


def load_abi(data: Any) -> list[dict[str, Any]]:
    """
    Extract an ABI from a list or a compiler artifact.

    Raises:
        InvalidConfigurationError: If no ABI list can be found
    """
    if isinstance(data, dict):
        data = data.get("abi")
    if not isinstance(data, list):
        raise InvalidConfigurationError("contract ABI must be a list or an artifact with 'abi'")
    return data


def _find_abi(abi: Sequence[dict[str, Any]], kind: str, name: str) -> dict[str, Any] | None:
    for entry in abi:
        if entry.get("type") == kind and entry.get("name") == name:
            return entry
    return None


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


class EvmLedger(LedgerClient):
    """
    LedgerClient reading a contract's event logs.

    Args:
        w3: Connected AsyncWeb3 instance
        contract_address: Address of the service contract emitting the events
        abi: Contract ABI containing every event kind to be queried
    """

    def __init__(self, w3: AsyncWeb3, contract_address: str, abi: Sequence[dict[str, Any]]) -> None:
        self._w3 = w3
        self._address = to_checksum_address(normalize_address(contract_address))
        self._abi = list(abi)
        self._contract = w3.eth.contract(address=self._address, abi=self._abi)
        self._topics: dict[str, bytes] = {}

    def _topic(self, event_kind: str) -> bytes:
        topic = self._topics.get(event_kind)
        if topic is None:
            event_abi = _find_abi(self._abi, "event", event_kind)
            if event_abi is None:
                raise InvalidConfigurationError(
                    f"event {event_kind!r} is not in the contract ABI", "tracked_events", event_kind
                )
            topic = event_abi_to_log_topic(event_abi)
            self._topics[event_kind] = topic
        return topic

    async def current_height(self) -> int:
        return int(await self._w3.eth.block_number)

    async def query(self, event_filter: EventFilter) -> list[LedgerEvent]:
        topic = self._topic(event_filter.event_kind)
        try:
            logs = await self._w3.eth.get_logs(
                {
                    "address": self._address,
                    "fromBlock": event_filter.start_block,
                    "toBlock": event_filter.end_block,
                    "topics": [_hex(topic)],
                }
            )
        except Exception as e:
            raise LedgerQueryError(
                f"get_logs failed: {str(e) or type(e).__name__}",
                event_kind=event_filter.event_kind,
                start_block=event_filter.start_block,
                end_block=event_filter.end_block,
            ) from e

        decoder = getattr(self._contract.events, event_filter.event_kind)()
        events: list[LedgerEvent] = []
        for log in logs:
            decoded = decoder.process_log(log)
            events.append(
                LedgerEvent(
                    event_kind=event_filter.event_kind,
                    block_number=int(decoded["blockNumber"]),
                    fields=dict(decoded["args"]),
                    tx_reference=_hex(decoded["transactionHash"]),
                    log_index=int(decoded["logIndex"]),
                )
            )
        logger.debug(
            "Fetched %d %s logs in blocks [%d, %d]",
            len(events),
            event_filter.event_kind,
            event_filter.start_block,
            event_filter.end_block,
        )
        return events


class EvmMigrationService(MigrationService):
    """
    MigrationService backed by a deployed service contract.

    Transactions are sent from ``account``. Privileged calls append the
    authorization's nonce, deadline and signature to the operation's own
    arguments, matching signatures such as
    ``deposit(uint256,uint256,uint256,bytes)``.

    Args:
        w3: Connected AsyncWeb3 instance
        contract_address: Address of the service contract
        abi: Contract ABI
        account: Local account that signs and pays for transactions; None
            gives a read-only service (snapshots and nonces only)
        receipt_timeout_seconds: Bound on waiting for each receipt
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        abi: Sequence[dict[str, Any]],
        account: LocalAccount | None = None,
        *,
        receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ) -> None:
        self._w3 = w3
        self._address = to_checksum_address(normalize_address(contract_address))
        self._abi = list(abi)
        self._contract = w3.eth.contract(address=self._address, abi=self._abi)
        self._account = account
        self._receipt_timeout = receipt_timeout_seconds

    @property
    def sender(self) -> str:
        return normalize_address(self._require_account().address)

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise InvalidConfigurationError(
                "service has no sender account; it can only read state", "account"
            )
        return self._account

    async def bulk_migrate(self, participants: Sequence[str]) -> MigrationReceipt:
        users = [to_checksum_address(normalize_address(p)) for p in participants]
        function = getattr(self._contract.functions, BULK_MIGRATE_FUNCTION)(users)
        receipt = await self._transact(function, BULK_MIGRATE_FUNCTION)

        tx_reference = _hex(receipt["transactionHash"])
        if receipt["status"] != 1:
            logger.warning("Bulk migration transaction %s reverted", tx_reference)
            return MigrationReceipt(
                tx_reference=tx_reference,
                status=ReceiptStatus.REVERTED,
                block_number=receipt.get("blockNumber"),
            )

        result_event = None
        if _find_abi(self._abi, "event", RESULT_EVENT) is not None:
            decoded = getattr(self._contract.events, RESULT_EVENT)().process_receipt(
                receipt, errors=DISCARD
            )
            if decoded:
                args = decoded[-1]["args"]
                result_event = MigrationResultEvent(
                    success_count=int(args["successCount"]),
                    total_users=int(args["totalUsers"]),
                )
        return MigrationReceipt(
            tx_reference=tx_reference,
            status=ReceiptStatus.CONFIRMED,
            result_event=result_event,
            block_number=receipt.get("blockNumber"),
        )

    async def get_participant_snapshot(self, participant: str) -> ParticipantSnapshot:
        key = normalize_address(participant)
        user = to_checksum_address(key)
        functions = self._contract.functions
        try:
            stakes = await getattr(functions, STAKES_FUNCTION)(user).call()
            activity_fields: dict[str, Any] = {}
            pending: dict[str, Any] = {}
            activity_abi = _find_abi(self._abi, "function", ACTIVITY_FUNCTION)
            if activity_abi is not None:
                values = await getattr(functions, ACTIVITY_FUNCTION)(user).call()
                names = [o.get("name") or f"field{i}" for i, o in enumerate(activity_abi["outputs"])]
                if not isinstance(values, (list, tuple)):
                    values = (values,)
                for name, value in zip(names, values, strict=False):
                    if name.startswith("pending"):
                        pending[name] = value
                    else:
                        activity_fields[name] = value
            if _find_abi(self._abi, "function", PREMIUM_FUNCTION) is not None:
                activity_fields["isPremium"] = await getattr(functions, PREMIUM_FUNCTION)(
                    user
                ).call()
        except Exception as e:
            raise ServiceCallError(
                f"Could not read state of {key}: {str(e) or type(e).__name__}",
                operation=STAKES_FUNCTION,
            ) from e
        return ParticipantSnapshot(
            participant=key,
            stake_count=len(stakes),
            pending_rewards=pending,
            activity=activity_fields,
        )

    async def get_nonce(self, caller: str) -> int:
        user = to_checksum_address(normalize_address(caller))
        try:
            return int(await getattr(self._contract.functions, NONCE_FUNCTION)(user).call())
        except Exception as e:
            raise ServiceCallError(
                f"Could not read nonce of {caller}: {str(e) or type(e).__name__}",
                operation=NONCE_FUNCTION,
            ) from e

    async def submit_privileged(
        self,
        caller: str,
        operation: str,
        args: Sequence[Any],
        authorization: SignedAuthorization,
    ) -> PrivilegedCallReceipt:
        key = normalize_address(caller)
        if key != self.sender:
            raise ServiceCallError(
                f"caller {key} is not the configured sender {self.sender}", operation=operation
            )

        message = authorization.message
        latest = await self._w3.eth.get_block("latest")
        if int(latest["timestamp"]) > message.deadline:
            raise ExpiredAuthorizationError(
                deadline=message.deadline,
                checked_at=int(latest["timestamp"]),
                caller=key,
                nonce=message.nonce,
            )
        expected_nonce = await self.get_nonce(key)
        if message.nonce != expected_nonce:
            raise StaleNonceError(message.nonce, expected_nonce, caller=key)

        try:
            function = self._contract.get_function_by_signature(operation)(
                *args, message.nonce, message.deadline, authorization.signature
            )
        except ValueError as e:
            raise InvalidConfigurationError(
                f"operation {operation!r} is not in the contract ABI", "operation", operation
            ) from e

        try:
            receipt = await self._transact(function, operation)
        except ContractLogicError as e:
            raise AuthorizationError(
                f"{operation} rejected by contract: {e}", caller=key, nonce=message.nonce
            ) from e

        tx_reference = _hex(receipt["transactionHash"])
        if receipt["status"] != 1:
            raise AuthorizationError(
                f"{operation} reverted in {tx_reference}", caller=key, nonce=message.nonce
            )
        return PrivilegedCallReceipt(tx_reference=tx_reference, caller=key, operation=operation)

    async def _transact(self, function: Any, operation: str) -> Any:
        """Build, sign, send and await one transaction from the configured account."""
        account = self._require_account()
        try:
            tx = await function.build_transaction(
                {
                    "from": account.address,
                    "nonce": await self._w3.eth.get_transaction_count(account.address, "pending"),
                    "chainId": await self._w3.eth.chain_id,
                }
            )
        except ContractLogicError:
            raise
        except Exception as e:
            raise ServiceCallError(
                f"Could not build {operation} transaction: {str(e) or type(e).__name__}",
                operation=operation,
            ) from e

        signed = account.sign_transaction(tx)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("Sent %s transaction %s", operation, _hex(tx_hash))
        try:
            return await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except TimeExhausted as e:
            raise ServiceCallError(
                f"{operation} transaction {_hex(tx_hash)} not mined within "
                f"{self._receipt_timeout}s",
                operation=operation,
            ) from e


__all__ = [
    "BULK_MIGRATE_FUNCTION",
    "RESULT_EVENT",
    "EvmLedger",
    "EvmMigrationService",
    "load_abi",
]
