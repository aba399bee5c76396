"""Pydantic models for the edge security API."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Channel = Literal["email", "sms"]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(..., description="Current server time")


class MessageResponse(BaseModel):
    message: str


# ── Two-factor ─────────────────────────────────────────────────────────────


class ChallengeRequest(BaseModel):
    """Start or resend a two-factor challenge."""
    channel: Channel = Field(..., description="Delivery channel for the code")


class VerifyRequest(BaseModel):
    channel: Channel = Field(..., description="Channel the code was sent to")
    code: str = Field(..., pattern=r"^\s*\d{6}\s*$", description="6-digit verification code")


class BackupCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32, description="One unused backup code")


class ChallengeResponse(BaseModel):
    message: str
    channel: Channel
    expires_at: datetime = Field(..., description="When the code stops being accepted")
    expires_in_seconds: int


class BackupCodesResponse(BaseModel):
    """Freshly generated backup codes. Shown once; only hashes are kept."""
    codes: List[str]
    remaining_codes: int


class SessionResponse(BaseModel):
    user_id: str
    is_authenticated: bool
    two_factor_verified: bool
    last_activity: datetime
    idle_expires_at: datetime = Field(..., description="Session is evicted if idle past this time")
    remaining_backup_codes: int


# ── Security ───────────────────────────────────────────────────────────────


class CspViolation(BaseModel):
    """Browser CSP violation (``application/csp-report`` body)."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    document_uri: Optional[str] = Field(None, alias="document-uri")
    violated_directive: Optional[str] = Field(None, alias="violated-directive")
    effective_directive: Optional[str] = Field(None, alias="effective-directive")
    blocked_uri: Optional[str] = Field(None, alias="blocked-uri")
    source_file: Optional[str] = Field(None, alias="source-file")
    line_number: Optional[int] = Field(None, alias="line-number")


class CspReport(BaseModel):
    csp_report: CspViolation = Field(..., alias="csp-report")


class PolicyStats(BaseModel):
    limit: int
    window_seconds: float
    requests: int
    throttled: int


class FingerprintStats(BaseModel):
    fingerprint: str
    requests: int


class RateLimitStatsResponse(BaseModel):
    tracked_keys: int
    policies: Dict[str, PolicyStats]
    top_fingerprints: List[FingerprintStats]
    enabled: bool = True
