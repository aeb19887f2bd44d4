"""
Calls API - local control surface for the call UI

Implements:
- Placing a call (caller side)
- Answering a call (callee side)
- Hanging up
- Reading the current call state
"""
from fastapi import APIRouter, Depends, HTTPException

from peercall.api.deps import get_call_controller
from peercall.schemas.call import (
    AcceptCallRequest,
    CallFailureInfo,
    CallStateResponse,
    EndCallResponse,
    StartCallRequest,
)
from peercall.services.call import (
    AlreadyInCallError,
    CallController,
    CallNotFoundError,
    CallServiceError,
    CallView,
    FailureReason,
    InvalidParticipantError,
)

router = APIRouter()

FAILURE_STATUS_CODES = {
    FailureReason.MEDIA_UNAVAILABLE: 503,
    FailureReason.SIGNALING_FAILED: 502,
    FailureReason.TRANSPORT_FAILED: 502,
    FailureReason.NEGOTIATION_FAILED: 502,
}


def _to_response(view: CallView) -> CallStateResponse:
    failure = None
    if view.failure is not None:
        failure = CallFailureInfo(reason=view.failure.reason.value, message=view.failure.message)

    return CallStateResponse(
        call_id=view.call_id,
        state=view.state.value,
        role=view.role.value if view.role else None,
        counterpart_id=view.counterpart_id,
        has_local_stream=view.local_stream is not None,
        has_remote_stream=view.remote_stream is not None,
        failure=failure,
    )


def _raise_for_failure(view: CallView):
    if view.failure is None:
        return
    raise HTTPException(
        status_code=FAILURE_STATUS_CODES.get(view.failure.reason, 500),
        detail={"reason": view.failure.reason.value, "message": view.failure.message},
    )


@router.post("/calls/start", response_model=CallStateResponse)
async def start_call(
    req: StartCallRequest,
    controller: CallController = Depends(get_call_controller)
):
    """
    Call another user.

    Publishes the offer in the shared call record and returns once the
    session is negotiating (or failed).
    """
    try:
        view = await controller.start_call(req.counterpart_id)
    except AlreadyInCallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidParticipantError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CallServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    _raise_for_failure(view)
    return _to_response(view)


@router.post("/calls/accept", response_model=CallStateResponse)
async def accept_call(
    req: AcceptCallRequest,
    controller: CallController = Depends(get_call_controller)
):
    """
    Answer a call placed by another user.

    Watches the shared call record and answers as soon as the offer is there.
    """
    try:
        view = await controller.accept_call(req.counterpart_id)
    except AlreadyInCallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidParticipantError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CallServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    _raise_for_failure(view)
    return _to_response(view)


@router.post("/calls/end", response_model=EndCallResponse)
async def end_call(controller: CallController = Depends(get_call_controller)):
    """Hang up the current call. Repeated calls are harmless."""
    try:
        view = await controller.end_call()
    except CallNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return EndCallResponse(
        call_id=view.call_id,
        state=view.state.value,
        message="Call ended" if view.failure is None else view.failure.message,
    )


@router.get("/calls/current", response_model=CallStateResponse)
async def current_call(controller: CallController = Depends(get_call_controller)):
    return _to_response(controller.current)
