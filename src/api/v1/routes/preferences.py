"""Contact channel preference API routes."""

from fastapi import APIRouter, Depends, Request

from api.dependencies.auth import CurrentService
from api.v1.dependencies import get_preference_service
from api.v1.schemas.common import AUTH_RESPONSES, ErrorResponse
from api.v1.schemas.preference import (
    OptOutRequest,
    PreferenceDetailResponse,
    PreferenceResponse,
    PreferenceUpdate,
    SendCheckDetailResponse,
    SendCheckRequest,
    SendCheckResponse,
)
from core.rate_limit import limiter
from domain.entities.message import ChannelType
from domain.services.preference_service import PreferenceService

router = APIRouter(
    prefix="/contacts/{contact_id}/channels/{channel}/preference",
    tags=["preferences"],
)


@router.get(
    "",
    response_model=PreferenceDetailResponse,
    summary="Get a channel preference",
    responses={
        404: {"model": ErrorResponse, "description": "No preference stored"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_preference(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    caller: CurrentService,
    service: PreferenceService = Depends(get_preference_service),
) -> PreferenceDetailResponse:
    """Get the stored preference of a contact on a channel."""
    preference = await service.get_preference(contact_id, str(channel))
    return PreferenceDetailResponse(data=PreferenceResponse.from_entity(preference))


@router.put(
    "",
    response_model=PreferenceDetailResponse,
    summary="Create or update a channel preference",
    responses={**AUTH_RESPONSES},
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def upsert_preference(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    body: PreferenceUpdate,
    caller: CurrentService,
    service: PreferenceService = Depends(get_preference_service),
) -> PreferenceDetailResponse:
    """Apply the given fields over the stored preference, or over the defaults."""
    preference = await service.upsert_preference(
        contact_id,
        str(channel),
        body.model_dump(exclude_unset=True),
    )
    return PreferenceDetailResponse(data=PreferenceResponse.from_entity(preference))


@router.post(
    "/can-send",
    response_model=SendCheckDetailResponse,
    summary="Check whether a send is allowed",
    responses={**AUTH_RESPONSES},
)
@limiter.limit("120/minute")  # type: ignore[untyped-decorator]
async def can_send(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    body: SendCheckRequest,
    caller: CurrentService,
    service: PreferenceService = Depends(get_preference_service),
) -> SendCheckDetailResponse:
    """Return the first rule that refuses the send, if any. Counters are not touched."""
    reason = await service.explain(
        contact_id,
        str(channel),
        category=body.category,
        priority=body.priority,
        sender=body.sender,
        send_at=body.send_at,
    )
    return SendCheckDetailResponse(data=SendCheckResponse(allowed=reason is None, reason=reason))


@router.post(
    "/record-send",
    response_model=PreferenceDetailResponse,
    summary="Count a send",
    responses={**AUTH_RESPONSES},
)
@limiter.limit("120/minute")  # type: ignore[untyped-decorator]
async def record_send(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    caller: CurrentService,
    service: PreferenceService = Depends(get_preference_service),
) -> PreferenceDetailResponse:
    """Count one send against the hourly, daily and weekly counters."""
    preference = await service.record_send(contact_id, str(channel))
    return PreferenceDetailResponse(data=PreferenceResponse.from_entity(preference))


@router.post(
    "/opt-in",
    response_model=PreferenceDetailResponse,
    summary="Opt a contact in",
    responses={**AUTH_RESPONSES},
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def opt_in(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    caller: CurrentService,
    service: PreferenceService = Depends(get_preference_service),
) -> PreferenceDetailResponse:
    """Allow notifications on the channel again."""
    preference = await service.opt_in(contact_id, str(channel))
    return PreferenceDetailResponse(data=PreferenceResponse.from_entity(preference))


@router.post(
    "/opt-out",
    response_model=PreferenceDetailResponse,
    summary="Opt a contact out",
    responses={**AUTH_RESPONSES},
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def opt_out(
    request: Request,
    contact_id: str,
    channel: ChannelType,
    caller: CurrentService,
    body: OptOutRequest | None = None,
    service: PreferenceService = Depends(get_preference_service),
) -> PreferenceDetailResponse:
    """Stop all notifications on the channel and record why."""
    preference = await service.opt_out(contact_id, str(channel), reason=body.reason if body else None)
    return PreferenceDetailResponse(data=PreferenceResponse.from_entity(preference))
