"""
Two-factor step-up endpoints.

The primary login lives outside this service and calls
``edge_guard.dependencies.login_user``; everything here operates on the
session it opened.  All routes fall under the ``auth`` rate limit policy.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Response

from edge_guard.dependencies import (
    CurrentSession,
    CurrentUserId,
    Directory,
    Sessions,
    TwoFactor,
    VerifiedSession,
    clear_session_cookie,
)
from edge_guard.models import (
    BackupCodeRequest,
    BackupCodesResponse,
    ChallengeRequest,
    ChallengeResponse,
    MessageResponse,
    SessionResponse,
    VerifyRequest,
)
from edge_guard.services.two_factor import ChallengeIssued

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _challenge_response(issued: ChallengeIssued, message: str, now: float) -> ChallengeResponse:
    return ChallengeResponse(
        message=message,
        channel=issued.channel,
        expires_at=datetime.fromtimestamp(issued.expires_at, tz=timezone.utc),
        expires_in_seconds=max(0, int(issued.expires_at - now)),
    )


@router.post(
    "/two-factor/initiate",
    response_model=ChallengeResponse,
    operation_id="initiateTwoFactor",
    summary="Send a new verification code over the chosen channel",
)
async def initiate(body: ChallengeRequest, session: CurrentSession, two_factor: TwoFactor) -> ChallengeResponse:
    """
    Issue a fresh 6-digit code, replacing any pending one.
    A delivery failure answers 502 but the code stays valid for ``resend``.
    """
    issued = await two_factor.initiate(session.user_id, body.channel)
    return _challenge_response(issued, f"Verification code sent via {body.channel}", two_factor.now())


@router.post(
    "/two-factor/resend",
    response_model=ChallengeResponse,
    operation_id="resendTwoFactor",
    summary="Deliver the pending verification code again",
)
async def resend(body: ChallengeRequest, session: CurrentSession, two_factor: TwoFactor) -> ChallengeResponse:
    issued = await two_factor.resend(session.user_id, body.channel)
    return _challenge_response(issued, f"Verification code re-sent via {body.channel}", two_factor.now())


@router.post(
    "/two-factor/verify",
    response_model=MessageResponse,
    operation_id="verifyTwoFactor",
    summary="Verify the code and elevate the session",
)
async def verify(body: VerifyRequest, session: CurrentSession, two_factor: TwoFactor) -> MessageResponse:
    await two_factor.verify(session.user_id, body.channel, body.code)
    return MessageResponse(message="Two-factor verification successful")


@router.post(
    "/two-factor/backup",
    response_model=MessageResponse,
    operation_id="verifyBackupCode",
    summary="Verify with a single-use backup code",
)
async def verify_backup(body: BackupCodeRequest, session: CurrentSession, two_factor: TwoFactor) -> MessageResponse:
    await two_factor.verify_backup_code(session.user_id, body.code)
    return MessageResponse(message="Backup code accepted")


@router.post(
    "/two-factor/backup-codes",
    response_model=BackupCodesResponse,
    operation_id="generateBackupCodes",
    summary="Generate a new batch of backup codes (replaces the old batch)",
)
async def generate_backup_codes(session: VerifiedSession, two_factor: TwoFactor) -> BackupCodesResponse:
    codes = await two_factor.generate_backup_codes(session.user_id)
    return BackupCodesResponse(codes=codes, remaining_codes=len(codes))


@router.get(
    "/session",
    response_model=SessionResponse,
    operation_id="getSession",
    summary="Current session and step-up status",
)
async def get_session(session: CurrentSession, sessions: Sessions, two_factor: TwoFactor) -> SessionResponse:
    return SessionResponse(
        user_id=session.user_id,
        is_authenticated=session.is_authenticated,
        two_factor_verified=session.two_factor_verified,
        last_activity=datetime.fromtimestamp(session.last_activity, tz=timezone.utc),
        idle_expires_at=datetime.fromtimestamp(
            session.last_activity + sessions.idle_timeout, tz=timezone.utc,
        ),
        remaining_backup_codes=await two_factor.remaining_backup_codes(session.user_id),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    operation_id="logout",
    summary="End the session and clear the session cookie",
)
async def logout(
    user_id: CurrentUserId,
    response: Response,
    sessions: Sessions,
    two_factor: TwoFactor,
    directory: Directory,
) -> MessageResponse:
    sessions.end(user_id)
    two_factor.discard(user_id)
    directory.forget(user_id)
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")
