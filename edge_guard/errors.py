"""
Error taxonomy for the edge security layer.

Every failure a client can remediate is a subclass of EdgeGuardError with a
stable machine-readable ``code`` and the HTTP status the API renders it with.
Rate limiting is not here: a throttle is a decision value (see
``edge_guard.rate_limit.limiter.Throttled``), not an exception.
"""

from __future__ import annotations

from typing import Any

from fastapi import status


class EdgeGuardError(Exception):
    code: str = "edge_guard_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Request rejected"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.message)
        self.detail = message or self.message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, **self.extra}


# ── Two-factor ────────────────────────────────────────────────────────────


class TwoFactorError(EdgeGuardError):
    code = "two_factor_error"


class ChallengeNotFound(TwoFactorError):
    code = "challenge_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    message = "No verification code is pending. Request a new code."


class ChallengeExpired(TwoFactorError):
    code = "challenge_expired"
    status_code = status.HTTP_410_GONE
    message = "Verification code expired. Request a new code."


class ChallengeLocked(TwoFactorError):
    code = "challenge_locked"
    status_code = status.HTTP_423_LOCKED
    message = "Too many incorrect codes. Use a backup code or request a new code."

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        extra.setdefault("fallback", "backup_code")
        super().__init__(message, **extra)


class CodeMismatch(TwoFactorError):
    code = "code_mismatch"
    message = "Incorrect verification code."

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(attempts_remaining=attempts_remaining)
        self.attempts_remaining = attempts_remaining


class InvalidBackupCode(TwoFactorError):
    code = "invalid_backup_code"
    message = "Backup code is invalid or has already been used."

    def __init__(self, remaining_codes: int) -> None:
        super().__init__(remaining_codes=remaining_codes)
        self.remaining_codes = remaining_codes


class DispatchFailure(TwoFactorError):
    code = "dispatch_failure"
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "The verification code could not be delivered. Try again."


class ChannelUnavailable(TwoFactorError):
    code = "channel_unavailable"
    message = "This delivery channel is not available for the account."


# ── Session ───────────────────────────────────────────────────────────────


class SessionError(EdgeGuardError):
    code = "session_error"
    status_code = status.HTTP_401_UNAUTHORIZED


class SessionUnauthenticated(SessionError):
    code = "unauthenticated"
    message = "Authentication required. Please log in."


class SessionIdle(SessionError):
    code = "session_idle"
    message = "Session expired after inactivity. Please log in again."


class StepUpRequired(SessionError):
    code = "step_up_required"
    status_code = status.HTTP_428_PRECONDITION_REQUIRED
    message = "Two-factor verification required."


class AdminRequired(SessionError):
    code = "admin_required"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Administrator access required."
