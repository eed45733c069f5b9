"""
Co-signed privileged call flow.

A privileged call is performed by the caller but only accepted when it
carries an authorization signed by a separate authority. Each call gets its
own AuthorizationAttempt:

    CREATED -> SIGNED -> SUBMITTED -> ACCEPTED | REJECTED

- prepare(): fetch the caller's next nonce from the service (never cached)
  and build a message with deadline = now + ttl
- sign(): have the authority sign the message
- submit(): check the deadline locally, then hand the call to the service,
  which verifies deadline, nonce and signature against the operation it
  actually executes

A rejection ends the attempt, never the surrounding process. Retrying
means preparing a new attempt, which picks up a fresh nonce.

Usage:
    >>> flow = PrivilegedCallFlow(service, signer)
    >>> outcome = await flow.execute(
    ...     user, "deposit(uint256,uint256,uint256,bytes)", args=(amount, lock, 0, b"")
    ... )
    >>> outcome.state
    <AuthorizationState.ACCEPTED: 'accepted'>
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from ledgershift.authorization.models import (
    VALID_TRANSITIONS,
    AuthorizationMessage,
    AuthorizationOutcome,
    AuthorizationState,
    SignedAuthorization,
)
from ledgershift.authorization.signer import AuthorizationSigner
from ledgershift.config import (
    DEFAULT_AUTHORIZATION_TTL_SECONDS,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    AuthorizationConfig,
)
from ledgershift.exceptions import (
    AuthorizationError,
    AuthorizationStateError,
    ExpiredAuthorizationError,
    InvalidConfigurationError,
    LedgerShiftError,
    ServiceCallError,
)
from ledgershift.ledger.interface import MigrationService
from ledgershift.migration.metrics import MigrationMetrics
from ledgershift.observability import (
    ATTR_AUTHORIZATION_STATE,
    ATTR_CALLER,
    ATTR_ERROR_TYPE,
    ATTR_NONCE,
    ATTR_OPERATION,
    ATTR_TX_REFERENCE,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

ACCEPTED_REASON = "accepted"
SERVICE_ERROR_REASON = "service_error"


class AuthorizationAttempt:
    """
    State of one privileged-call authorization.

    An attempt is used for exactly one submission. Illegal transitions
    (signing twice, submitting unsigned, resubmitting) raise
    AuthorizationStateError.

    Attributes:
        caller: Normalized caller address
        operation: Canonical operation signature
        message: The message to be signed
    """

    def __init__(self, caller: str, operation: str, message: AuthorizationMessage) -> None:
        self.caller = caller
        self.operation = operation
        self.message = message
        self._state = AuthorizationState.CREATED
        self._signed: SignedAuthorization | None = None
        self._outcome: AuthorizationOutcome | None = None
        self.history: list[AuthorizationState] = [AuthorizationState.CREATED]

    @property
    def state(self) -> AuthorizationState:
        return self._state

    @property
    def signed(self) -> SignedAuthorization | None:
        return self._signed

    @property
    def outcome(self) -> AuthorizationOutcome | None:
        return self._outcome

    def transition(self, new_state: AuthorizationState) -> None:
        """
        Move to new_state.

        Raises:
            AuthorizationStateError: If the transition is not allowed
        """
        if new_state not in VALID_TRANSITIONS.get(self._state, frozenset()):
            raise AuthorizationStateError(self._state.value, new_state.value)
        self._state = new_state
        self.history.append(new_state)

    def record_signature(self, signed: SignedAuthorization) -> None:
        self.transition(AuthorizationState.SIGNED)
        self._signed = signed

    def finish(self, outcome: AuthorizationOutcome) -> AuthorizationOutcome:
        self.transition(outcome.state)
        self._outcome = outcome
        return outcome

    def __repr__(self) -> str:
        return (
            f"AuthorizationAttempt(caller={self.caller}, operation={self.operation!r}, "
            f"nonce={self.message.nonce}, state={self._state.value})"
        )


class PrivilegedCallFlow:
    """
    Prepares, signs and submits co-signed privileged calls.

    Example:
        >>> flow = PrivilegedCallFlow(service, signer, AuthorizationConfig(domain))
        >>> attempt = await flow.prepare(user, "deposit(uint256,uint256,uint256,bytes)")
        >>> flow.sign(attempt)
        >>> outcome = await flow.submit(attempt, args=(amount, lock, 0, b""))
    """

    def __init__(
        self,
        service: MigrationService,
        signer: AuthorizationSigner,
        config: AuthorizationConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        metrics: MigrationMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the flow.

        Args:
            service: Service that verifies and executes privileged calls
            signer: Authority-side signer
            config: TTL, timeouts and domain; the domain must match the signer's
            clock: Source of the current Unix time
            metrics: Optional metrics recorder
            tracer: Optional custom Tracer
            enable_tracing: Whether to create a default tracer when none is given

        Raises:
            InvalidConfigurationError: If config.domain differs from the signer's
        """
        if config is not None and config.domain != signer.domain:
            raise InvalidConfigurationError(
                "authorization config domain does not match the signer's domain",
                "domain",
                config.domain.to_dict(),
            )
        self._service = service
        self._signer = signer
        self._ttl = config.ttl_seconds if config else DEFAULT_AUTHORIZATION_TTL_SECONDS
        self._timeout = config.call_timeout_seconds if config else DEFAULT_CALL_TIMEOUT_SECONDS
        self._clock = clock
        self._metrics = metrics
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def prepare(self, caller: str, operation: str) -> AuthorizationAttempt:
        """
        Create an attempt for caller to perform operation.

        The nonce is read from the service now; a previously fetched value
        is never reused.

        Raises:
            InvalidAddressError: If caller is malformed
            InvalidConfigurationError: If operation is not a function signature
            ServiceCallError: If the nonce cannot be read
        """
        try:
            nonce = await asyncio.wait_for(self._service.get_nonce(caller), self._timeout)
        except LedgerShiftError:
            raise
        except Exception as e:
            raise ServiceCallError(
                f"Could not read nonce for {caller}: {str(e) or type(e).__name__}",
                operation=operation,
            ) from e

        deadline = int(self._clock()) + self._ttl
        message = self._signer.create_message(caller, operation, nonce, deadline)
        logger.debug(
            "Prepared authorization for %s %s (nonce %d, deadline %d)",
            message.caller,
            operation,
            nonce,
            deadline,
        )
        return AuthorizationAttempt(message.caller, operation, message)

    def sign(self, attempt: AuthorizationAttempt) -> SignedAuthorization:
        """
        Have the authority sign the attempt's message.

        Raises:
            AuthorizationStateError: If the attempt is not in CREATED
        """
        if attempt.state != AuthorizationState.CREATED:
            raise AuthorizationStateError(attempt.state.value, AuthorizationState.SIGNED.value)
        signed = self._signer.sign(attempt.message)
        attempt.record_signature(signed)
        return signed

    async def submit(
        self,
        attempt: AuthorizationAttempt,
        args: Sequence[Any] = (),
    ) -> AuthorizationOutcome:
        """
        Submit a signed attempt.

        Rejections are returned as REJECTED outcomes, not raised; call
        outcome.raise_for_rejection() to turn one into an exception.

        Raises:
            AuthorizationStateError: If the attempt is not in SIGNED
        """
        attempt.transition(AuthorizationState.SUBMITTED)
        signed = attempt.signed
        assert signed is not None

        with self._tracer.span(
            "ledgershift.authorization.submit",
            {
                ATTR_CALLER: attempt.caller,
                ATTR_OPERATION: attempt.operation,
                ATTR_NONCE: attempt.message.nonce,
            },
        ) as span:
            now = int(self._clock())
            if now > attempt.message.deadline:
                outcome = self._reject(
                    attempt,
                    ExpiredAuthorizationError(
                        deadline=attempt.message.deadline,
                        checked_at=now,
                        caller=attempt.caller,
                        nonce=attempt.message.nonce,
                    ),
                )
            else:
                outcome = await self._send(attempt, signed, args)

            if span is not None:
                span.set_attribute(ATTR_AUTHORIZATION_STATE, outcome.state.value)
                if outcome.tx_reference:
                    span.set_attribute(ATTR_TX_REFERENCE, outcome.tx_reference)
                if outcome.error is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, type(outcome.error).__name__)

        if self._metrics:
            self._metrics.record_authorization(outcome.reason)
        return outcome

    async def execute(
        self,
        caller: str,
        operation: str,
        args: Sequence[Any] = (),
    ) -> AuthorizationOutcome:
        """Prepare, sign and submit in one step."""
        attempt = await self.prepare(caller, operation)
        self.sign(attempt)
        return await self.submit(attempt, args)

    async def _send(
        self,
        attempt: AuthorizationAttempt,
        signed: SignedAuthorization,
        args: Sequence[Any],
    ) -> AuthorizationOutcome:
        try:
            receipt = await asyncio.wait_for(
                self._service.submit_privileged(attempt.caller, attempt.operation, args, signed),
                self._timeout,
            )
        except AuthorizationError as e:
            return self._reject(attempt, e)
        except ServiceCallError as e:
            return self._reject(attempt, e, reason=SERVICE_ERROR_REASON)
        except TimeoutError:
            return self._reject(
                attempt,
                ServiceCallError(
                    f"no confirmation within {self._timeout}s", operation=attempt.operation
                ),
                reason=SERVICE_ERROR_REASON,
            )
        except Exception as e:
            return self._reject(
                attempt,
                ServiceCallError(str(e) or type(e).__name__, operation=attempt.operation),
                reason=SERVICE_ERROR_REASON,
            )

        logger.info(
            "Privileged call %s by %s accepted (nonce %d, tx %s)",
            attempt.operation,
            attempt.caller,
            attempt.message.nonce,
            receipt.tx_reference,
        )
        return attempt.finish(
            AuthorizationOutcome(
                state=AuthorizationState.ACCEPTED,
                caller=attempt.caller,
                operation=attempt.operation,
                nonce=attempt.message.nonce,
                reason=ACCEPTED_REASON,
                tx_reference=receipt.tx_reference,
            )
        )

    def _reject(
        self,
        attempt: AuthorizationAttempt,
        error: LedgerShiftError,
        reason: str | None = None,
    ) -> AuthorizationOutcome:
        reason = reason or getattr(error, "reason", SERVICE_ERROR_REASON)
        logger.log(
            error.severity.log_level,
            "Privileged call %s by %s rejected (%s): %s",
            attempt.operation,
            attempt.caller,
            reason,
            error,
        )
        return attempt.finish(
            AuthorizationOutcome(
                state=AuthorizationState.REJECTED,
                caller=attempt.caller,
                operation=attempt.operation,
                nonce=attempt.message.nonce,
                reason=reason,
                error=error,
            )
        )


__all__ = [
    "ACCEPTED_REASON",
    "SERVICE_ERROR_REASON",
    "AuthorizationAttempt",
    "PrivilegedCallFlow",
]
