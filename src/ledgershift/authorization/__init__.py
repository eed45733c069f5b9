"""
Two-party authorization of privileged calls.

A caller's privileged operation is accepted only with an EIP-712
signature from a separate authority over {caller, selector, nonce,
deadline}, bound to one deployment by the domain separator.

- AuthorizationSigner: builds and signs messages
- PrivilegedCallFlow: nonce fetch, signing, submission and outcome
- verify_authorization(): recovers the signer exactly as a verifier does
"""

from ledgershift.authorization.models import (
    SELECTOR_LENGTH,
    SIGNATURE_LENGTH,
    VALID_TRANSITIONS,
    AuthorizationMessage,
    AuthorizationOutcome,
    AuthorizationState,
    SignedAuthorization,
)
from ledgershift.authorization.signer import (
    AUTHORIZATION_TYPES,
    PRIMARY_TYPE,
    AuthorizationSigner,
    LocalAccountAuthority,
    SigningAuthority,
    build_typed_data,
    function_selector,
    recover_authority,
    resolve_selector,
    verify_authorization,
)
from ledgershift.authorization.flow import (
    ACCEPTED_REASON,
    SERVICE_ERROR_REASON,
    AuthorizationAttempt,
    PrivilegedCallFlow,
)

__all__ = [
    # Models
    "AuthorizationMessage",
    "AuthorizationOutcome",
    "AuthorizationState",
    "SignedAuthorization",
    "SELECTOR_LENGTH",
    "SIGNATURE_LENGTH",
    "VALID_TRANSITIONS",
    # Signing
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
    # Flow
    "ACCEPTED_REASON",
    "SERVICE_ERROR_REASON",
    "AuthorizationAttempt",
    "PrivilegedCallFlow",
]
