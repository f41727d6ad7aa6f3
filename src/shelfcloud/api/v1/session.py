"""Session info endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from shelfcloud.dependencies import SettingsDep, get_caller
from shelfcloud.schemas.library import SessionInfoResponse
from shelfcloud.services.quota import SessionQuota
from shelfcloud.services.search import Caller

router = APIRouter()


@router.get(
    "",
    response_model=SessionInfoResponse,
    summary="Current session",
    description="Identity of the caller and anonymous quota usage.",
)
async def get_session_info(
    caller: Annotated[Caller, Depends(get_caller)],
    settings: SettingsDep,
) -> SessionInfoResponse:
    quota = SessionQuota(caller.session, allowed=settings.anonymous_upstream_calls)
    return SessionInfoResponse(
        user_id=caller.user_id,
        authenticated=caller.authenticated,
        upstream_calls=quota.calls_made,
        upstream_calls_allowed=quota.allowed,
    )
