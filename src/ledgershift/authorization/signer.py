"""
EIP-712 signing and verification of privileged-call authorizations.

The signed payload is the typed-data digest of:

    domain:  EIP712Domain(string name, string version, uint256 chainId,
                          address verifyingContract)
    message: FunctionCall(address caller, bytes4 selector, uint256 nonce,
                          uint256 deadline)

Including the domain means a signature for one deployment, chain or
protocol version never verifies against another. Including the selector
means a signature for one operation never verifies against another, even
with identical nonce and deadline.

Usage:
    >>> from ledgershift.authorization import AuthorizationSigner, LocalAccountAuthority
    >>>
    >>> signer = AuthorizationSigner(LocalAccountAuthority(authority_key), domain)
    >>> message = signer.create_message(
    ...     caller=user,
    ...     operation="deposit(uint256,uint256,uint256,bytes)",
    ...     nonce=5,
    ...     deadline=1_700_086_400,
    ... )
    >>> signed = signer.sign(message)
    >>> verify_authorization(domain, signed.message, signed.signature, signer.authority_address)
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import keccak

from ledgershift.authorization.models import AuthorizationMessage, SignedAuthorization
from ledgershift.config import DomainSeparator
from ledgershift.exceptions import InvalidConfigurationError, SignatureMismatchError
from ledgershift.observability import (
    ATTR_CALLER,
    ATTR_NONCE,
    Tracer,
    create_tracer,
)
from ledgershift.participants import normalize_address

logger = logging.getLogger(__name__)

PRIMARY_TYPE = "FunctionCall"

AUTHORIZATION_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    PRIMARY_TYPE: [
        {"name": "caller", "type": "address"},
        {"name": "selector", "type": "bytes4"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


def function_selector(signature: str) -> bytes:
    """
    Compute the 4-byte selector of a canonical function signature.

    Args:
        signature: e.g. "setPremiumStatus(bool,uint256,uint256,uint256,bytes)"

    Returns:
        First four bytes of keccak256 of the signature text

    Raises:
        InvalidConfigurationError: If the text is not a function signature
    """
    canonical = "".join(signature.split())
    name, _, rest = canonical.partition("(")
    if not name or not rest.endswith(")"):
        raise InvalidConfigurationError(
            f"not a canonical function signature: {signature!r}", "operation", signature
        )
    return bytes(keccak(text=canonical)[:4])


def resolve_selector(operation: str | bytes) -> bytes:
    """Accept a function signature or an already computed 4-byte selector."""
    if isinstance(operation, (bytes, bytearray)):
        if len(operation) != 4:
            raise InvalidConfigurationError(
                f"selector must be 4 bytes, got {len(operation)}", "operation", operation
            )
        return bytes(operation)
    return function_selector(operation)


def build_typed_data(domain: DomainSeparator, message: AuthorizationMessage) -> dict[str, Any]:
    """
    Build the EIP-712 ``full_message`` structure for an authorization.

    Returns:
        Dict with types, primaryType, domain and message members
    """
    return {
        "types": AUTHORIZATION_TYPES,
        "primaryType": PRIMARY_TYPE,
        "domain": domain.to_eip712(),
        "message": message.to_typed_message(),
    }


def recover_authority(
    domain: DomainSeparator,
    message: AuthorizationMessage,
    signature: bytes,
) -> str | None:
    """
    Recover the address that signed message under domain.

    Returns:
        Normalized signer address, or None if the signature is malformed
    """
    signable = encode_typed_data(full_message=build_typed_data(domain, message))
    try:
        recovered = Account.recover_message(signable, signature=signature)
    except (ValueError, BadSignature, KeyValidationError) as e:
        logger.debug("Could not recover signer for caller %s: %s", message.caller, e)
        return None
    return normalize_address(recovered)


def verify_authorization(
    domain: DomainSeparator,
    message: AuthorizationMessage,
    signature: bytes,
    authority: str,
) -> None:
    """
    Check that signature is authority's signature over domain and message.

    This is the same check the verifying service performs, so a service
    double and an operator can both verify without a chain.

    Raises:
        SignatureMismatchError: If the signature does not verify
    """
    expected = normalize_address(authority)
    recovered = recover_authority(domain, message, signature)
    if recovered != expected:
        raise SignatureMismatchError(
            expected_signer=expected,
            recovered_signer=recovered,
            caller=message.caller,
            nonce=message.nonce,
        )


@runtime_checkable
class SigningAuthority(Protocol):
    """
    The trusted key holder co-signing privileged calls.

    The authority is never the participant being migrated or the caller
    of the privileged operation.
    """

    @property
    def address(self) -> str:
        """Normalized address of the authority key."""
        ...

    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes:
        """Sign EIP-712 typed data, returning the 65-byte signature."""
        ...


class LocalAccountAuthority:
    """
    SigningAuthority backed by a private key held in process.

    Args:
        private_key: Hex private key of the authority
    """

    def __init__(self, private_key: str | bytes) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return normalize_address(self._account.address)

    def sign_typed_data(self, full_message: dict[str, Any]) -> bytes:
        signed = self._account.sign_message(encode_typed_data(full_message=full_message))
        return bytes(signed.signature)

    def __repr__(self) -> str:
        return f"LocalAccountAuthority({self.address})"


class AuthorizationSigner:
    """
    Produces domain-separated authorizations from a signing authority.

    Args:
        authority: The key holder that signs
        domain: Domain separator of the verifying deployment
        tracer: Optional custom Tracer
        enable_tracing: Whether to create a default tracer when none is given
    """

    def __init__(
        self,
        authority: SigningAuthority,
        domain: DomainSeparator,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._authority = authority
        self._domain = domain
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def domain(self) -> DomainSeparator:
        return self._domain

    @property
    def authority_address(self) -> str:
        return self._authority.address

    def create_message(
        self,
        caller: str,
        operation: str | bytes,
        nonce: int,
        deadline: int,
    ) -> AuthorizationMessage:
        """
        Assemble the message binding caller, operation, nonce and deadline.

        Args:
            caller: Address performing the privileged call
            operation: Canonical function signature or 4-byte selector
            nonce: The service's next nonce for caller, fetched fresh
            deadline: Unix timestamp after which the message is rejected

        Raises:
            InvalidAddressError: If caller is not a 20-byte address
            InvalidConfigurationError: If operation is not a function signature
        """
        return AuthorizationMessage(
            caller=normalize_address(caller),
            selector=resolve_selector(operation),
            nonce=nonce,
            deadline=deadline,
        )

    def sign(self, message: AuthorizationMessage) -> SignedAuthorization:
        """Sign message under this signer's domain."""
        with self._tracer.span(
            "ledgershift.authorization.sign",
            {ATTR_CALLER: message.caller, ATTR_NONCE: message.nonce},
        ):
            signature = self._authority.sign_typed_data(build_typed_data(self._domain, message))
            logger.debug(
                "Signed authorization for caller %s selector %s nonce %d",
                message.caller,
                message.selector_hex,
                message.nonce,
            )
            return SignedAuthorization(
                message=message,
                signature=signature,
                authority=self._authority.address,
            )

    def verify(self, signed: SignedAuthorization) -> bool:
        """Return True if signed verifies against this signer's domain and authority."""
        try:
            verify_authorization(
                self._domain, signed.message, signed.signature, self._authority.address
            )
        except SignatureMismatchError:
            return False
        return True


__all__ = [
    "AUTHORIZATION_TYPES",
    "PRIMARY_TYPE",
    "AuthorizationSigner",
    "LocalAccountAuthority",
    "SigningAuthority",
    "build_typed_data",
    "function_selector",
    "recover_authority",
    "resolve_selector",
    "verify_authorization",
]
