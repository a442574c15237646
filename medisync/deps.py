"""Request-scoped dependencies for the report routes."""
from typing import Optional

from fastapi import Header, HTTPException, status

from medisync.context import ProfileContext
from medisync.services.gemini import GeminiGateway, ModelGateway
from medisync.services.report_store import ReportStore


def get_profile_context(
    x_user_id: Optional[str] = Header(default=None),
    x_profile_id: Optional[str] = Header(default=None),
) -> ProfileContext:
    """Resolve the acting account/profile from the headers the upload client sends."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id header is required",
        )
    profile_id = (x_profile_id or "").strip() or None
    return ProfileContext(user_id=user_id, profile_id=profile_id)


def get_report_store() -> ReportStore:
    return ReportStore()


def get_gateway() -> ModelGateway:
    return GeminiGateway()
