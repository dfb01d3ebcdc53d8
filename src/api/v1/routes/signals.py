"""Signal ingestion API route."""

from fastapi import APIRouter, Depends, Request

from api.dependencies.auth import CurrentService
from api.v1.dependencies import get_delivery_tracker
from api.v1.schemas.common import AUTH_RESPONSES, ErrorResponse
from api.v1.schemas.message import MessageEventResponse, MessageResponse
from api.v1.schemas.signal import (
    SignalRequest,
    SignalResultDetailResponse,
    SignalResultResponse,
)
from core.clock import utcnow
from core.rate_limit import limiter
from domain.services.delivery_tracker import DeliveryTracker

router = APIRouter(prefix="/signals", tags=["signals"])


@router.post(
    "",
    response_model=SignalResultDetailResponse,
    summary="Report a transport signal",
    responses={
        200: {"description": "Signal recorded; check `conflict` for refused status changes"},
        409: {"model": ErrorResponse, "description": "Storage contention outlasted every retry"},
        **AUTH_RESPONSES,
    },
)
@limiter.limit("600/minute")  # type: ignore[untyped-decorator]
async def report_signal(
    request: Request,
    body: SignalRequest,
    caller: CurrentService,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
) -> SignalResultDetailResponse:
    """
    Attach a transport observation to its Message.

    Signals are at-least-once and may arrive out of order. Replays resolve to
    the same Message by stamp id or, failing that, by content fingerprint.
    """
    result = await tracker.on_signal(body.to_signal(utcnow()))
    return SignalResultDetailResponse(
        data=SignalResultResponse(
            message=MessageResponse.from_entity(result.message),
            event=MessageEventResponse.model_validate(result.event),
            conflict=result.conflict,
            conflict_reason=result.conflict_reason,
            duplicate=result.duplicate,
            created=result.created,
        )
    )
