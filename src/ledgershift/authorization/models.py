"""
Models for co-signed privileged calls.

An AuthorizationMessage binds {caller, operation selector, nonce, deadline}.
The authority signs it under a DomainSeparator, producing a
SignedAuthorization that is consumed by exactly one privileged call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from eth_utils import to_checksum_address
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledgershift.exceptions import AuthorizationError, LedgerShiftError
from ledgershift.participants import normalize_address

SIGNATURE_LENGTH = 65
SELECTOR_LENGTH = 4


def _coerce_bytes(value: Any) -> Any:
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        return bytes.fromhex(text)
    return value


class AuthorizationMessage(BaseModel):
    """
    The structured message an authority signs for one privileged call.

    Attributes:
        caller: Normalized address allowed to perform the call
        selector: 4-byte function identifier of the authorized operation
        nonce: Per-caller counter; must equal the service's next nonce
        deadline: Unix timestamp after which the message is rejected
    """

    model_config = ConfigDict(frozen=True)

    caller: str
    selector: bytes
    nonce: int = Field(..., ge=0)
    deadline: int = Field(..., ge=0)

    @field_validator("caller", mode="before")
    @classmethod
    def _normalize_caller(cls, value: Any) -> str:
        return normalize_address(value)

    @field_validator("selector", mode="before")
    @classmethod
    def _parse_selector(cls, value: Any) -> Any:
        return _coerce_bytes(value)

    @field_validator("selector")
    @classmethod
    def _check_selector_length(cls, value: bytes) -> bytes:
        if len(value) != SELECTOR_LENGTH:
            raise ValueError(f"selector must be {SELECTOR_LENGTH} bytes, got {len(value)}")
        return value

    @property
    def selector_hex(self) -> str:
        return "0x" + self.selector.hex()

    def to_typed_message(self) -> dict[str, Any]:
        """Message as the ``message`` member of EIP-712 typed data."""
        return {
            "caller": to_checksum_address(self.caller),
            "selector": self.selector,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "caller": self.caller,
            "selector": self.selector_hex,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


class SignedAuthorization(BaseModel):
    """
    An AuthorizationMessage with the authority's 65-byte signature.

    Attributes:
        message: The signed message
        signature: r || s || v ECDSA signature over the EIP-712 digest
        authority: Normalized address of the signing authority
    """

    model_config = ConfigDict(frozen=True)

    message: AuthorizationMessage
    signature: bytes
    authority: str

    @field_validator("signature", mode="before")
    @classmethod
    def _parse_signature(cls, value: Any) -> Any:
        return _coerce_bytes(value)

    @field_validator("signature")
    @classmethod
    def _check_signature_length(cls, value: bytes) -> bytes:
        if len(value) != SIGNATURE_LENGTH:
            raise ValueError(f"signature must be {SIGNATURE_LENGTH} bytes, got {len(value)}")
        return value

    @field_validator("authority", mode="before")
    @classmethod
    def _normalize_authority(cls, value: Any) -> str:
        return normalize_address(value)

    @property
    def signature_hex(self) -> str:
        return "0x" + self.signature.hex()

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message.to_dict(),
            "signature": self.signature_hex,
            "authority": self.authority,
        }


class AuthorizationState(Enum):
    """
    Lifecycle of one privileged-call attempt.

    CREATED -> SIGNED -> SUBMITTED -> ACCEPTED | REJECTED
    """

    CREATED = "created"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (AuthorizationState.ACCEPTED, AuthorizationState.REJECTED)


VALID_TRANSITIONS: dict[AuthorizationState, frozenset[AuthorizationState]] = {
    AuthorizationState.CREATED: frozenset({AuthorizationState.SIGNED}),
    AuthorizationState.SIGNED: frozenset({AuthorizationState.SUBMITTED}),
    AuthorizationState.SUBMITTED: frozenset(
        {AuthorizationState.ACCEPTED, AuthorizationState.REJECTED}
    ),
    AuthorizationState.ACCEPTED: frozenset(),
    AuthorizationState.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class AuthorizationOutcome:
    """
    Final result of a privileged-call attempt.

    Attributes:
        state: ACCEPTED or REJECTED
        caller: Normalized caller address
        operation: Canonical operation signature
        nonce: Nonce the attempt carried
        reason: "accepted" or the rejection reason (expired, stale_nonce,
            signature_mismatch, service_error)
        tx_reference: Transaction reference of an accepted call
        error: The rejection error, None when accepted
    """

    state: AuthorizationState
    caller: str
    operation: str
    nonce: int
    reason: str
    tx_reference: str | None = None
    error: LedgerShiftError | None = None

    @property
    def accepted(self) -> bool:
        return self.state == AuthorizationState.ACCEPTED

    def raise_for_rejection(self) -> None:
        """Re-raise the rejection error if the attempt was rejected."""
        if self.error is not None:
            raise self.error
        if not self.accepted:
            raise AuthorizationError(
                f"Authorization for {self.operation} rejected: {self.reason}",
                caller=self.caller,
                nonce=self.nonce,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "caller": self.caller,
            "operation": self.operation,
            "nonce": self.nonce,
            "reason": self.reason,
            "tx_reference": self.tx_reference,
            "error": self.error.to_dict() if self.error else None,
        }


__all__ = [
    "SELECTOR_LENGTH",
    "SIGNATURE_LENGTH",
    "VALID_TRANSITIONS",
    "AuthorizationMessage",
    "AuthorizationOutcome",
    "AuthorizationState",
    "SignedAuthorization",
]
