"""
Unit tests for EIP-712 authorization signing.

Tests cover:
- function_selector() and resolve_selector()
- AuthorizationMessage and SignedAuthorization validation
- Typed data layout
- Signing and recovery round trip
- Domain, operation and field binding of signatures
"""

import pytest
from pydantic import ValidationError

from ledgershift.authorization.models import AuthorizationMessage, SignedAuthorization
from ledgershift.authorization.signer import (
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
from ledgershift.config import DomainSeparator
from ledgershift.exceptions import (
    InvalidAddressError,
    InvalidConfigurationError,
    SignatureMismatchError,
)
from ledgershift.observability import MockTracer
from tests.fixtures import (
    AUTHORITY_ADDRESS,
    AUTHORITY_KEY,
    CALLER_ADDRESS,
    CALLER_KEY,
    DEPOSIT_OPERATION,
    FIXED_NOW,
    OTHER_CONTRACT_ADDRESS,
    PREMIUM_OPERATION,
    make_domain,
)

DEADLINE = FIXED_NOW + 86_400


class TestFunctionSelector:
    """Tests for selector computation."""

    def test_known_selector(self) -> None:
        """transfer(address,uint256) has the well-known selector a9059cbb."""
        assert function_selector("transfer(address,uint256)") == bytes.fromhex("a9059cbb")

    def test_whitespace_is_ignored(self) -> None:
        assert function_selector("transfer(address, uint256)") == bytes.fromhex("a9059cbb")

    def test_operations_differ(self) -> None:
        assert function_selector(DEPOSIT_OPERATION) != function_selector(PREMIUM_OPERATION)

    @pytest.mark.parametrize("signature", ["deposit", "(uint256)", "deposit(uint256"])
    def test_not_a_signature(self, signature: str) -> None:
        with pytest.raises(InvalidConfigurationError):
            function_selector(signature)

    def test_resolve_selector_accepts_bytes(self) -> None:
        assert resolve_selector(b"\xa9\x05\x9c\xbb") == bytes.fromhex("a9059cbb")

    def test_resolve_selector_rejects_wrong_length(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            resolve_selector(b"\x00\x01")


class TestAuthorizationMessage:
    """Tests for AuthorizationMessage validation."""

    def test_normalizes_caller_and_parses_hex_selector(self) -> None:
        message = AuthorizationMessage(
            caller="0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            selector="0xa9059cbb",
            nonce=0,
            deadline=DEADLINE,
        )
        assert message.caller == CALLER_ADDRESS
        assert message.selector == bytes.fromhex("a9059cbb")
        assert message.selector_hex == "0xa9059cbb"

    def test_rejects_malformed_caller(self) -> None:
        with pytest.raises(ValidationError):
            AuthorizationMessage(caller="0x1234", selector=b"\x00" * 4, nonce=0, deadline=1)

    def test_rejects_wrong_selector_length(self) -> None:
        with pytest.raises(ValidationError):
            AuthorizationMessage(caller=CALLER_ADDRESS, selector=b"\x00" * 3, nonce=0, deadline=1)

    def test_rejects_negative_nonce(self) -> None:
        with pytest.raises(ValidationError):
            AuthorizationMessage(caller=CALLER_ADDRESS, selector=b"\x00" * 4, nonce=-1, deadline=1)

    def test_is_frozen(self) -> None:
        message = AuthorizationMessage(
            caller=CALLER_ADDRESS, selector=b"\x00" * 4, nonce=0, deadline=1
        )
        with pytest.raises(ValidationError):
            message.nonce = 1  # type: ignore[misc]

    def test_typed_message_uses_checksum_caller(self) -> None:
        message = AuthorizationMessage(
            caller=CALLER_ADDRESS, selector=b"\x00" * 4, nonce=3, deadline=9
        )
        assert message.to_typed_message() == {
            "caller": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            "selector": b"\x00" * 4,
            "nonce": 3,
            "deadline": 9,
        }


class TestTypedData:
    """Tests for build_typed_data()."""

    def test_layout(self, domain: DomainSeparator) -> None:
        message = AuthorizationMessage(
            caller=CALLER_ADDRESS, selector=b"\x00" * 4, nonce=0, deadline=1
        )
        data = build_typed_data(domain, message)
        assert data["primaryType"] == PRIMARY_TYPE
        assert data["domain"] == domain.to_eip712()
        assert [f["name"] for f in data["types"][PRIMARY_TYPE]] == [
            "caller",
            "selector",
            "nonce",
            "deadline",
        ]


class TestAuthorizationSigner:
    """Tests for AuthorizationSigner."""

    def test_authority_protocol(self, authority: LocalAccountAuthority) -> None:
        assert isinstance(authority, SigningAuthority)
        assert authority.address == AUTHORITY_ADDRESS

    def test_sign_and_recover(self, signer: AuthorizationSigner, domain: DomainSeparator) -> None:
        message = signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE)

        signed = signer.sign(message)

        assert len(signed.signature) == 65
        assert signed.authority == AUTHORITY_ADDRESS
        assert signed.message == message
        assert recover_authority(domain, message, signed.signature) == AUTHORITY_ADDRESS
        assert signer.verify(signed)

    def test_signing_is_deterministic(self, signer: AuthorizationSigner) -> None:
        message = signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE)
        assert signer.sign(message).signature == signer.sign(message).signature

    def test_create_message_computes_selector(self, signer: AuthorizationSigner) -> None:
        message = signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE)
        assert message.selector == function_selector(DEPOSIT_OPERATION)

    @pytest.mark.parametrize("caller", ["0x1234", "not-an-address", 42])
    def test_create_message_rejects_malformed_caller(
        self, signer: AuthorizationSigner, caller: object
    ) -> None:
        with pytest.raises(InvalidAddressError):
            signer.create_message(caller, DEPOSIT_OPERATION, 5, DEADLINE)  # type: ignore[arg-type]

    def test_sign_records_span(self, authority: LocalAccountAuthority) -> None:
        tracer = MockTracer()
        signer = AuthorizationSigner(authority, make_domain(), tracer=tracer)
        signer.sign(signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 0, DEADLINE))
        assert tracer.span_names == ["ledgershift.authorization.sign"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"chain_id": 1},
            {"version": "3"},
            {"name": "MOVINEarn"},
            {"verifying_contract": OTHER_CONTRACT_ADDRESS},
        ],
    )
    def test_signature_is_bound_to_domain(
        self,
        signer: AuthorizationSigner,
        overrides: dict[str, object],
    ) -> None:
        """A signature for one deployment never verifies under another."""
        signed = signer.sign(signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE))
        with pytest.raises(SignatureMismatchError):
            verify_authorization(
                make_domain(**overrides), signed.message, signed.signature, AUTHORITY_ADDRESS
            )

    @pytest.mark.parametrize(
        "changes",
        [
            {"nonce": 6},
            {"deadline": DEADLINE + 1},
            {"caller": AUTHORITY_ADDRESS},
            {"selector": function_selector(PREMIUM_OPERATION)},
        ],
    )
    def test_signature_is_bound_to_every_field(
        self,
        signer: AuthorizationSigner,
        domain: DomainSeparator,
        changes: dict[str, object],
    ) -> None:
        signed = signer.sign(signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE))
        altered = signed.message.model_copy(update=changes)
        with pytest.raises(SignatureMismatchError):
            verify_authorization(domain, altered, signed.signature, AUTHORITY_ADDRESS)

    def test_wrong_authority(self, domain: DomainSeparator) -> None:
        impostor = AuthorizationSigner(LocalAccountAuthority(CALLER_KEY), domain)
        signed = impostor.sign(
            impostor.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE)
        )
        with pytest.raises(SignatureMismatchError) as exc_info:
            verify_authorization(domain, signed.message, signed.signature, AUTHORITY_ADDRESS)
        assert exc_info.value.recovered_signer == CALLER_ADDRESS
        assert exc_info.value.expected_signer == AUTHORITY_ADDRESS

    def test_garbage_signature_is_rejected(self, domain: DomainSeparator) -> None:
        message = AuthorizationMessage(
            caller=CALLER_ADDRESS, selector=b"\x00" * 4, nonce=0, deadline=1
        )
        assert recover_authority(domain, message, b"\x00" * 65) != AUTHORITY_ADDRESS
        with pytest.raises(SignatureMismatchError):
            verify_authorization(domain, message, b"\x00" * 65, AUTHORITY_ADDRESS)

    def test_verify_returns_false_for_other_signer(self, domain: DomainSeparator) -> None:
        signer = AuthorizationSigner(LocalAccountAuthority(AUTHORITY_KEY), domain)
        impostor = AuthorizationSigner(LocalAccountAuthority(CALLER_KEY), domain)
        forged = impostor.sign(
            impostor.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 0, DEADLINE)
        )
        assert signer.verify(forged) is False


class TestSignedAuthorization:
    """Tests for SignedAuthorization."""

    def test_parses_hex_signature(self, signer: AuthorizationSigner) -> None:
        signed = signer.sign(signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE))
        copy = SignedAuthorization(
            message=signed.message,
            signature=signed.signature_hex,
            authority=signed.authority,
        )
        assert copy == signed

    def test_rejects_short_signature(self, signer: AuthorizationSigner) -> None:
        message = signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE)
        with pytest.raises(ValidationError):
            SignedAuthorization(message=message, signature=b"\x00" * 64, authority=AUTHORITY_ADDRESS)

    def test_to_dict(self, signer: AuthorizationSigner) -> None:
        signed = signer.sign(signer.create_message(CALLER_ADDRESS, DEPOSIT_OPERATION, 5, DEADLINE))
        data = signed.to_dict()
        assert data["authority"] == AUTHORITY_ADDRESS
        assert data["message"]["nonce"] == 5
        assert data["message"]["selector"] == "0x" + function_selector(DEPOSIT_OPERATION).hex()
        assert data["signature"].startswith("0x")
        assert len(data["signature"]) == 2 + 130
