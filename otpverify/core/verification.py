"""
Verification session orchestrator.

Composes IdentityResolver, ExpiryClock, AttemptGuard and CodeEntryBuffer and
drives them against the VerificationAPI:

    Idle -> Submitting -> Success
                       -> Rejected (retryable transport failure, or account not found)
                       -> Idle (incorrect code, generic failure)
                       -> Locked (terminal for this instance)

Every path through submit() and resend() ends in an Outcome carrying a
user-facing message; no error escapes to the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from otpverify.core.attempt_guard import AttemptGuard, LockedState, attempts_text, locked_message
from otpverify.core.code_entry import CodeEntryBuffer
from otpverify.core.config import settings
from otpverify.core.errors import (
    ProtocolError,
    RejectionKind,
    ServerRejection,
    Severity,
    TransportError,
    ValidationError,
    VerificationError,
)
from otpverify.core.expiry_clock import CountdownTicker, ExpiryClock, countdown_urgency, format_countdown
from otpverify.core.identity import IdentityResolver, ResolvedIdentity, Resolution, mask_email
from otpverify.core.notices import LoginNotices
from otpverify.schemas.verification import Notice, VerificationView
from otpverify.services.verification_api import TIMEOUT_MESSAGE, VerificationAPI

logger = logging.getLogger(__name__)

INCOMPLETE_CODE_MESSAGE = "Please enter all 6 digits"
MISSING_EMAIL_MESSAGE = "Email address missing. Please return to registration."
EXPIRED_MESSAGE = "Your OTP has expired. Please request a new one."
IN_FLIGHT_MESSAGE = "A request is already in progress. Please wait."
FINISHED_MESSAGE = "This verification session has ended."
VERIFYING_MESSAGE = "Verifying your code..."
VERIFIED_MESSAGE = "Email verified successfully! Redirecting to login..."
VERIFIED_LOGIN_NOTICE = "Email verified successfully! You can now log in."
ALREADY_VERIFIED_MESSAGE = "Your email is already verified! Redirecting to login..."
ALREADY_VERIFIED_LOGIN_NOTICE = "Email already verified. You can now log in."
NOT_FOUND_MESSAGE = "Account not found. Please register first."
GENERIC_FAILURE_MESSAGE = "Verification failed"
RESEND_TOO_EARLY_MESSAGE = "You can request a new code once the current one expires."
RESEND_NO_EMAIL_MESSAGE = "No email found. Please register first."
RESENDING_MESSAGE = "Resending verification code..."
RESENT_MESSAGE = "New code sent! Please check your email."
RESEND_FAILED_MESSAGE = "Failed to resend code"


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCESS = "success"
    REJECTED = "rejected"
    LOCKED = "locked"


class OutcomeKind(str, Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    ACCOUNT_NOT_FOUND = "account_not_found"
    INCORRECT_CODE = "incorrect_code"
    LOCKED_OUT = "locked_out"
    TRANSPORT_ERROR = "transport_error"
    PROTOCOL_ERROR = "protocol_error"
    FAILED = "failed"
    NOT_SUBMITTABLE = "not_submittable"
    RESENT = "resent"
    RESEND_FAILED = "resend_failed"
    RESEND_NOT_ALLOWED = "resend_not_allowed"
    IGNORED = "ignored"


class Redirect(str, Enum):
    LOGIN = "login"
    REGISTER = "register"


@dataclass
class Outcome:
    """Result of a submit() or resend() call"""
    kind: OutcomeKind
    notice: Optional[Notice] = None
    redirect: Optional[Redirect] = None
    network_called: bool = False


class VerificationSession:
    """
    One verification flow for one page load.

    Args:
        api: VerificationAPI client
        resolver: IdentityResolver bound to the browser's storage scopes
        clock: ExpiryClock bound to the durable scope
        guard: AttemptGuard (a fresh one per page load)
        buffer: CodeEntryBuffer
        notices: Login notice queue (defaults to the resolver's ephemeral scope)
        timeout: Upper bound in seconds for each network call
    """

    def __init__(
        self,
        api: VerificationAPI,
        resolver: IdentityResolver,
        clock: ExpiryClock,
        guard: Optional[AttemptGuard] = None,
        buffer: Optional[CodeEntryBuffer] = None,
        notices: Optional[LoginNotices] = None,
        timeout: Optional[float] = None,
    ):
        self.api = api
        self.resolver = resolver
        self.clock = clock
        self.guard = guard or AttemptGuard()
        self.buffer = buffer or CodeEntryBuffer()
        self.notices = notices or LoginNotices(resolver.scopes.ephemeral)
        self.timeout = settings.REQUEST_TIMEOUT_SECONDS if timeout is None else timeout

        self.state = SessionState.IDLE
        self.message: Optional[Notice] = None
        self.redirect: Optional[Redirect] = None
        self.last_outcome: Optional[OutcomeKind] = None
        self._email: Optional[str] = None
        self._needs_manual_entry = False
        self._finished = False
        self._in_flight = False
        self._disposed = False
        self._ticker: Optional[CountdownTicker] = None
        self._make_ticker: Optional[Callable[[], CountdownTicker]] = None
        self._on_tick: Optional[Callable[[int], None]] = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def email(self) -> Optional[str]:
        return self._email

    @property
    def needs_manual_entry(self) -> bool:
        return self._needs_manual_entry

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def disposed(self) -> bool:
        return self._disposed

    def open(self) -> Resolution:
        """Resolve the identity and start or restore the countdown"""
        result = self.resolver.resolve()
        if isinstance(result, ResolvedIdentity):
            self._adopt(result.email)
        else:
            self._needs_manual_entry = True
            self._set_message(result.message, Severity.ERROR)
        return result

    def continue_with_manual_email(self, email: str) -> ResolvedIdentity:
        """
        Continue with a manually entered email.

        Raises:
            ValidationError: If the email has an invalid shape
        """
        identity = self.resolver.continue_with_manual_email(email)
        self._adopt(identity.email)
        return identity

    def _adopt(self, email: str) -> None:
        self._email = email
        self._needs_manual_entry = False
        remaining = self.clock.ensure_started()
        if remaining == 0:
            logger.info(f"Code for {mask_email(email)} already expired")
            self._set_message(EXPIRED_MESSAGE, Severity.ERROR)
        else:
            self.message = None

    # ------------------------------------------------------------------
    # Code entry
    # ------------------------------------------------------------------

    def _clear_error_on_input(self) -> None:
        if self.message and self.message.severity == Severity.ERROR and not self.guard.is_locked:
            self.message = None

    def enter_digit(self, index: int, value: str) -> bool:
        accepted = self.buffer.set_digit(index, value)
        if accepted:
            self._clear_error_on_input()
        return accepted

    def paste(self, text: str) -> bool:
        accepted = self.buffer.handle_paste(text)
        if accepted:
            self._clear_error_on_input()
        return accepted

    def backspace(self, index: int) -> None:
        self.buffer.handle_backspace(index)

    def move_left(self, index: int) -> None:
        self.buffer.move_left(index)

    def move_right(self, index: int) -> None:
        self.buffer.move_right(index)

    # ------------------------------------------------------------------
    # Countdown
    # ------------------------------------------------------------------

    def start_countdown(
        self,
        on_tick: Optional[Callable[[int], None]] = None,
        interval: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> CountdownTicker:
        """
        Start the 1-second countdown. Must be called from a running event loop.

        The ticker stops at zero and is restarted after a successful resend.
        """
        self._on_tick = on_tick
        ticker_kwargs = {"interval": interval}
        if sleep is not None:
            ticker_kwargs["sleep"] = sleep

        def make_ticker() -> CountdownTicker:
            return CountdownTicker(self.clock, self._handle_tick, self._handle_expired, **ticker_kwargs)

        self._make_ticker = make_ticker
        self._restart_ticker()
        return self._ticker

    def _restart_ticker(self) -> None:
        if self._make_ticker is None or self._disposed:
            return
        if self._ticker is not None:
            self._ticker.cancel()
        self._ticker = self._make_ticker()
        self._ticker.start()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()

    def _handle_tick(self, remaining: int) -> None:
        if self._on_tick is not None:
            self._on_tick(remaining)

    def _handle_expired(self) -> None:
        if self._finished or self._disposed:
            return
        logger.info("Code expired, resend is now available")
        self._set_message(EXPIRED_MESSAGE, Severity.ERROR)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _submit_blocker(self) -> Optional[ValidationError]:
        if self._disposed:
            return ValidationError(FINISHED_MESSAGE, Severity.INFO)
        if self._in_flight:
            return ValidationError(IN_FLIGHT_MESSAGE, Severity.INFO)
        if self._finished:
            return ValidationError(FINISHED_MESSAGE, Severity.INFO)
        if self.buffer.to_code_string() is None:
            return ValidationError(INCOMPLETE_CODE_MESSAGE)
        if not self._email:
            return ValidationError(MISSING_EMAIL_MESSAGE)
        if not self.guard.can_submit():
            return ValidationError(locked_message())
        if self.clock.is_expired():
            return ValidationError(EXPIRED_MESSAGE)
        return None

    def _resend_blocker(self) -> Optional[ValidationError]:
        if self._disposed:
            return ValidationError(FINISHED_MESSAGE, Severity.INFO)
        if self._in_flight:
            return ValidationError(IN_FLIGHT_MESSAGE, Severity.INFO)
        if self._finished:
            return ValidationError(FINISHED_MESSAGE, Severity.INFO)
        if not self._email:
            return ValidationError(RESEND_NO_EMAIL_MESSAGE)
        if self.guard.is_locked:
            return ValidationError(locked_message())
        if not self.clock.is_expired():
            return ValidationError(RESEND_TOO_EARLY_MESSAGE, Severity.INFO)
        return None

    def can_submit(self) -> bool:
        return self._submit_blocker() is None

    def can_resend(self) -> bool:
        return self._resend_blocker() is None

    # ------------------------------------------------------------------
    # Network operations
    # ------------------------------------------------------------------

    async def submit(self) -> Outcome:
        """Verify the entered code against the VerificationAPI"""
        blocker = self._submit_blocker()
        if blocker is not None:
            if not self._email:
                self._needs_manual_entry = True
            return self._finish(Outcome(OutcomeKind.NOT_SUBMITTABLE, self._set_message(blocker.message, blocker.severity)))

        code = self.buffer.to_code_string()
        email = self._email
        self.state = SessionState.SUBMITTING
        self._set_message(VERIFYING_MESSAGE, Severity.INFO)
        logger.info(f"Verifying code for {mask_email(email)}")

        reply = None
        error: Optional[VerificationError] = None
        self._in_flight = True
        try:
            reply = await asyncio.wait_for(self.api.verify_otp(email, code), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Verification request exceeded {self.timeout}s")
            error = TransportError(TIMEOUT_MESSAGE, timed_out=True)
        except VerificationError as e:
            error = e
        finally:
            self._in_flight = False

        if self._disposed:
            logger.info("Discarding verification response for a disposed session")
            return Outcome(OutcomeKind.IGNORED, network_called=True)

        if error is None:
            outcome = self._complete(
                OutcomeKind.VERIFIED, VERIFIED_MESSAGE, Severity.SUCCESS,
                VERIFIED_LOGIN_NOTICE, Severity.SUCCESS
            )
            logger.info(f"Email {mask_email(email)} verified")
        else:
            outcome = self._handle_verify_error(error)
        outcome.network_called = True
        return self._finish(outcome)

    def _handle_verify_error(self, error: VerificationError) -> Outcome:
        if isinstance(error, TransportError):
            self.state = SessionState.REJECTED
            self.buffer.clear()
            return Outcome(OutcomeKind.TRANSPORT_ERROR, self._set_message(error.message, Severity.ERROR))

        if isinstance(error, ProtocolError):
            self.state = SessionState.IDLE
            self.buffer.clear()
            return Outcome(OutcomeKind.PROTOCOL_ERROR, self._set_message(error.message, Severity.ERROR))

        if not isinstance(error, ServerRejection):
            logger.error(f"Unexpected verification error: {error!r}")
            self.state = SessionState.IDLE
            self.buffer.clear()
            return Outcome(OutcomeKind.FAILED, self._set_message(error.message or GENERIC_FAILURE_MESSAGE, Severity.ERROR))

        if error.kind == RejectionKind.ALREADY_VERIFIED:
            logger.info("Account already verified, redirecting to login")
            return self._complete(
                OutcomeKind.ALREADY_VERIFIED, ALREADY_VERIFIED_MESSAGE, Severity.INFO,
                ALREADY_VERIFIED_LOGIN_NOTICE, Severity.INFO
            )

        if error.kind == RejectionKind.NOT_FOUND:
            logger.warning("Account not found for pending verification email")
            self.state = SessionState.REJECTED
            self._finished = True
            self._stop_ticker()
            return Outcome(
                OutcomeKind.ACCOUNT_NOT_FOUND,
                self._set_message(NOT_FOUND_MESSAGE, Severity.ERROR),
                redirect=self._set_redirect(Redirect.REGISTER),
            )

        if error.kind == RejectionKind.LOCKOUT:
            self.guard.record_lockout(error.message or None, until=_as_datetime(error.payload.get("lockedUntil")))
            self.buffer.clear()
            self.state = SessionState.LOCKED
            return Outcome(OutcomeKind.LOCKED_OUT, self._set_message(self.guard.state.message, Severity.ERROR))

        if error.kind == RejectionKind.INCORRECT_CODE:
            remaining = error.payload["attemptsRemaining"]
            self.guard.record_failure(remaining)
            self.buffer.clear()
            self.state = SessionState.IDLE
            return Outcome(
                OutcomeKind.INCORRECT_CODE,
                self._set_message(f"Incorrect code. {attempts_text(self.guard.attempts_remaining)}.", Severity.ERROR),
            )

        self.buffer.clear()
        self.state = SessionState.IDLE
        return Outcome(OutcomeKind.FAILED, self._set_message(error.message or GENERIC_FAILURE_MESSAGE, Severity.ERROR))

    def _complete(
        self,
        kind: OutcomeKind,
        message: str,
        severity: Severity,
        login_notice: str,
        notice_severity: Severity,
    ) -> Outcome:
        """Terminal success-equivalent: clear stored state, queue the login notice"""
        self.resolver.clear()
        self.clock.clear()
        self.notices.push(login_notice, notice_severity)
        self.buffer.clear()
        self.state = SessionState.SUCCESS
        self._finished = True
        self._stop_ticker()
        return Outcome(kind, self._set_message(message, severity), redirect=self._set_redirect(Redirect.LOGIN))

    async def resend(self) -> Outcome:
        """Request a fresh code once the current one has expired"""
        blocker = self._resend_blocker()
        if blocker is not None:
            return self._finish(Outcome(OutcomeKind.RESEND_NOT_ALLOWED, self._set_message(blocker.message, blocker.severity)))

        email = self._email
        self._set_message(RESENDING_MESSAGE, Severity.INFO)
        logger.info(f"Resending code to {mask_email(email)}")

        error: Optional[VerificationError] = None
        self._in_flight = True
        try:
            await asyncio.wait_for(self.api.resend_otp(email), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Resend request exceeded {self.timeout}s")
            error = TransportError(TIMEOUT_MESSAGE, timed_out=True)
        except VerificationError as e:
            error = e
        finally:
            self._in_flight = False

        if self._disposed:
            logger.info("Discarding resend response for a disposed session")
            return Outcome(OutcomeKind.IGNORED, network_called=True)

        if error is not None:
            logger.warning(f"Resend failed: {error.message or RESEND_FAILED_MESSAGE}")
            notice = self._set_message(error.message or RESEND_FAILED_MESSAGE, Severity.ERROR)
            return self._finish(Outcome(OutcomeKind.RESEND_FAILED, notice, network_called=True))

        self.clock.start()
        self.guard.record_fresh_budget()
        self.buffer.clear()
        self.state = SessionState.IDLE
        self._restart_ticker()
        notice = self._set_message(RESENT_MESSAGE, Severity.SUCCESS)
        return self._finish(Outcome(OutcomeKind.RESENT, notice, network_called=True))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """Stop the countdown; responses arriving afterwards are discarded"""
        self._stop_ticker()
        self._disposed = True

    def abandon(self) -> None:
        """Leave the flow for registration or login, forgetting stored state"""
        self.resolver.clear()
        self.clock.clear()
        self.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_message(self, message: str, severity: Severity) -> Notice:
        self.message = Notice(message=message, severity=severity)
        return self.message

    def _set_redirect(self, redirect: Redirect) -> Redirect:
        self.redirect = redirect
        return redirect

    def _finish(self, outcome: Outcome) -> Outcome:
        self.last_outcome = outcome.kind
        return outcome

    def to_view(self) -> VerificationView:
        remaining = self.clock.remaining()
        state = self.guard.state
        return VerificationView(
            state=self.state.value,
            email=mask_email(self._email) if self._email else None,
            needs_manual_entry=self._needs_manual_entry,
            remaining_seconds=remaining,
            countdown=format_countdown(remaining),
            urgency=countdown_urgency(remaining),
            expired=self.clock.is_expired(),
            can_submit=self.can_submit(),
            can_resend=self.can_resend(),
            attempts_remaining=self.guard.attempts_remaining,
            attempts_warning=self.guard.warning(),
            locked=isinstance(state, LockedState),
            lockout_until=self.guard.lockout_until,
            digits=list(self.buffer.digits),
            focus_index=self.buffer.focus_index,
            message=self.message,
            outcome=self.last_outcome.value if self.last_outcome else None,
            redirect=self.redirect.value if self.redirect else None,
        )


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    return None
