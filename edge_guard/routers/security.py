"""
Security endpoints: CSP violation intake and rate limiter statistics.
"""

import json
import logging

from fastapi import APIRouter, HTTPException, Request, Response, status
from pydantic import ValidationError

from edge_guard.dependencies import AdminSession, Limiter
from edge_guard.models import CspReport, RateLimitStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/security", tags=["security"])


@router.post(
    "/csp-report",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    operation_id="reportCspViolation",
    summary="Receive a browser Content-Security-Policy violation report",
)
async def report_csp_violation(request: Request) -> Response:
    """
    Browsers post ``application/csp-report`` rather than JSON, so the body is
    parsed by hand instead of through a typed parameter.
    """
    try:
        report = CspReport.model_validate(json.loads(await request.body()))
    except (ValueError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed CSP report",
        ) from None

    violation = report.csp_report
    logger.warning(
        "CSP violation: directive=%s blocked=%s document=%s source=%s:%s",
        violation.effective_directive or violation.violated_directive,
        violation.blocked_uri,
        violation.document_uri,
        violation.source_file,
        violation.line_number,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/rate-limits",
    response_model=RateLimitStatsResponse,
    operation_id="getRateLimitStats",
    summary="Rate limiter statistics (admin, two-factor verified)",
)
async def get_rate_limit_stats(session: AdminSession, limiter: Limiter, top: int = 10) -> RateLimitStatsResponse:
    stats = limiter.stats(top=max(1, min(top, 100)))
    return RateLimitStatsResponse(enabled=limiter.enabled, **stats)
