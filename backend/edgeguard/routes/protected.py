"""
EdgeGuard — Protected Demonstration Route
==========================================

What:  Shows the authenticated principal reaching a handler.
Who:   Lives under the default protected prefix (/api/v1), so
       TokenAuthMiddleware has already verified the token.
"""

from fastapi import APIRouter, Depends

from edgeguard.middleware.auth import get_current_principal
from edgeguard.schemas.common import SuccessResponse

router = APIRouter(prefix="/api/v1", tags=["Protected"])


@router.get(
    "/protected",
    response_model=SuccessResponse,
    summary="Return the authenticated principal",
)
async def protected(user_id: str = Depends(get_current_principal)) -> SuccessResponse:
    return SuccessResponse(message="Authenticated", data={"user_id": user_id})
