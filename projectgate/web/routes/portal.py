"""Portal token validation route.

Routes:
- POST /portal/validate - Validate a token or short code
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from projectgate.db.connection import get_db
from projectgate.models import PortalValidation
from projectgate.portal.tokens import validate_portal_token

router = APIRouter(prefix="/portal", tags=["portal"])


class ValidateRequest(BaseModel):
    token: str


@router.post("/validate", response_model=PortalValidation)
async def validate(
    body: ValidateRequest,
    request: Request,
    session: AsyncSession = Depends(get_db),
) -> PortalValidation:
    """Always 200: an invalid link is reported as ``is_valid=false``."""
    return await validate_portal_token(
        session,
        body.token,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
