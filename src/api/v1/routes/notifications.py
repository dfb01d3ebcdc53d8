"""Notification API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from api.dependencies.auth import CurrentService
from api.v1.dependencies import get_notification_service
from api.v1.schemas.common import AUTH_RESPONSES, ErrorResponse
from api.v1.schemas.message import MessageResponse
from api.v1.schemas.notification import (
    DispatchDetailResponse,
    DispatchResponse,
    GatedTargetResponse,
    NotificationCreate,
    NotificationDetailResponse,
    NotificationResponse,
    NotificationScheduleRequest,
    NotificationStatsDetailResponse,
    NotificationStatsResponse,
    NotificationUpdate,
    UnsentTargetResponse,
)
from core.rate_limit import limiter
from domain.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Notification not found"}}


@router.post(
    "",
    response_model=NotificationDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification",
    responses={
        201: {"description": "Notification created in draft"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def create_notification(
    request: Request,
    body: NotificationCreate,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationDetailResponse:
    """Create a notification. It stays in `draft` until scheduled or dispatched."""
    notification = await service.create(
        type=body.type,
        channels=body.channels,
        recipients=[r.to_entity() for r in body.recipients],
        importance=body.importance,
        subject=body.subject,
        body=body.body,
        category=body.category,
        sender=body.sender,
        context=body.context,
        metadata=body.metadata,
    )
    return NotificationDetailResponse(data=NotificationResponse.from_entity(notification))


@router.get(
    "/{notification_id}",
    response_model=NotificationDetailResponse,
    summary="Get a notification",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_notification(
    request: Request,
    notification_id: UUID,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationDetailResponse:
    """Get a notification by ID."""
    notification = await service.get(notification_id)
    return NotificationDetailResponse(data=NotificationResponse.from_entity(notification))


@router.patch(
    "/{notification_id}",
    response_model=NotificationDetailResponse,
    summary="Update a notification",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Notification is no longer editable"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def update_notification(
    request: Request,
    notification_id: UUID,
    body: NotificationUpdate,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationDetailResponse:
    """Partially update a draft or scheduled notification."""
    changes = body.model_dump(exclude_unset=True, exclude={"recipients"})
    if body.recipients is not None:
        changes["recipients"] = [r.to_entity() for r in body.recipients]
    notification = await service.update(notification_id, **changes)
    return NotificationDetailResponse(data=NotificationResponse.from_entity(notification))


@router.post(
    "/{notification_id}/schedule",
    response_model=NotificationDetailResponse,
    summary="Schedule a notification",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Notification cannot be scheduled"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("30/minute")  # type: ignore[untyped-decorator]
async def schedule_notification(
    request: Request,
    notification_id: UUID,
    body: NotificationScheduleRequest,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationDetailResponse:
    """Schedule a draft, or move an already scheduled notification."""
    notification = await service.schedule(notification_id, body.scheduled_at)
    return NotificationDetailResponse(data=NotificationResponse.from_entity(notification))


@router.post(
    "/{notification_id}/dispatch",
    response_model=DispatchDetailResponse,
    summary="Dispatch a notification",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Not sendable, or scheduled for later"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("10/minute")  # type: ignore[untyped-decorator]
async def dispatch_notification(
    request: Request,
    notification_id: UUID,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> DispatchDetailResponse:
    """
    Fan a notification out into tracked messages.

    Targets refused by a contact's channel preference are reported in `gated`;
    targets whose message could not be stored are reported in `unsent`.
    """
    result = await service.dispatch(notification_id)
    return DispatchDetailResponse(
        data=DispatchResponse(
            notification=NotificationResponse.from_entity(result.notification),
            messages=[MessageResponse.from_entity(m) for m in result.messages],
            gated=[GatedTargetResponse.model_validate(g) for g in result.gated],
            unsent=[UnsentTargetResponse.model_validate(u) for u in result.unsent],
        )
    )


@router.post(
    "/{notification_id}/cancel",
    response_model=NotificationDetailResponse,
    summary="Cancel a notification",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Notification cannot be cancelled"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("10/minute")  # type: ignore[untyped-decorator]
async def cancel_notification(
    request: Request,
    notification_id: UUID,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationDetailResponse:
    """Cancel a notification and every message that can still be cancelled."""
    notification = await service.cancel(notification_id)
    return NotificationDetailResponse(data=NotificationResponse.from_entity(notification))


@router.get(
    "/{notification_id}/stats",
    response_model=NotificationStatsDetailResponse,
    summary="Get delivery statistics",
    responses={**_NOT_FOUND, **AUTH_RESPONSES},
)
@limiter.limit("60/minute")  # type: ignore[untyped-decorator]
async def get_notification_stats(
    request: Request,
    notification_id: UUID,
    caller: CurrentService,
    service: NotificationService = Depends(get_notification_service),
) -> NotificationStatsDetailResponse:
    """Message counts by status, recipient engagement and rates in percent."""
    stats = await service.stats(notification_id)
    return NotificationStatsDetailResponse(data=NotificationStatsResponse.model_validate(stats))
