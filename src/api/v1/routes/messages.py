"""Message API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies.auth import CurrentService
from api.v1.dependencies import get_delivery_tracker
from api.v1.schemas.common import AUTH_RESPONSES, ErrorResponse
from api.v1.schemas.message import (
    CancelMessageRequest,
    EngagementDetailResponse,
    EngagementResponse,
    LatestEventResponse,
    MessageDetailResponse,
    MessageEventListResponse,
    MessageEventResponse,
    MessageResponse,
)
from core.rate_limit import limiter
from domain.services.delivery_tracker import DeliveryTracker

router = APIRouter(prefix="/messages", tags=["messages"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Message not found"}}


@router.get(
    "/{message_id}",
    response_model=MessageDetailResponse,
    summary="Get a message",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_message(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> MessageDetailResponse:
    """Get a message with its content, recipients and current status."""
    message = await tracker.get_message(message_id)
    return MessageDetailResponse(data=MessageResponse.from_entity(message))


@router.get(
    "/{message_id}/events",
    response_model=MessageEventListResponse,
    summary="List message timeline",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def list_message_events(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    limit: int | None = Query(None, ge=1, le=500, description="Maximum events to return"),
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> MessageEventListResponse:
    """List the events of a message, newest first."""
    events = await tracker.list_events(message_id, limit=limit)
    return MessageEventListResponse(
        data=[MessageEventResponse.model_validate(e) for e in events],
        meta={"count": len(events)},
    )


@router.get(
    "/{message_id}/latest-event",
    response_model=LatestEventResponse,
    summary="Get the latest message event",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_latest_event(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> LatestEventResponse:
    """Get the newest event; equal timestamps are ordered by event id."""
    event = await tracker.latest_event(message_id)
    return LatestEventResponse(data=MessageEventResponse.model_validate(event) if event else None)


@router.get(
    "/{message_id}/engagement",
    response_model=EngagementDetailResponse,
    summary="Get recipient engagement",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_engagement(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> EngagementDetailResponse:
    """Opens, clicks, deliveries and bounces across the message's recipients."""
    stats = await tracker.engagement_stats(message_id)
    return EngagementDetailResponse(data=EngagementResponse.model_validate(stats))


@router.post(
    "/{message_id}/cancel",
    response_model=MessageDetailResponse,
    summary="Cancel a message",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Message can no longer be cancelled"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def cancel_message(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    body: CancelMessageRequest | None = None,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> MessageDetailResponse:
    """Cancel a message that has not reached a final state."""
    message = await tracker.cancel_message(message_id, reason=body.reason if body else None)
    return MessageDetailResponse(data=MessageResponse.from_entity(message))


@router.post(
    "/{message_id}/retry",
    response_model=MessageDetailResponse,
    summary="Retry a failed message",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Not failed, or retry ceiling reached"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def retry_message(
    request: Request,
    message_id: UUID,
    caller: CurrentService,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> MessageDetailResponse:
    """Move a failed message to `retrying`."""
    message = await tracker.retry_message(message_id)
    return MessageDetailResponse(data=MessageResponse.from_entity(message))
