"""Trigger endpoint — push notifications enter the pipeline here."""

from fastapi import APIRouter, Depends, HTTPException, Response

from slipway.core.auth import verify_api_key
from slipway.core.errors import AdmissionError
from slipway.daemon.executor import RunManager, get_manager
from slipway.schemas.event import PushEventRequest, PushEventResponse

router = APIRouter(prefix="/events", tags=["events"])


def require_manager() -> RunManager:
    manager = get_manager()
    if manager is None:
        raise HTTPException(503, "Run manager not initialized")
    return manager


@router.post("/push", response_model=PushEventResponse)
async def push_event(
    event: PushEventRequest,
    response: Response,
    wait: bool = True,
    manager: RunManager = Depends(require_manager),
    _: str = Depends(verify_api_key),
):
    """Evaluate a push. Admitted pushes start a run; others are acknowledged and dropped."""
    try:
        admitted = manager.trigger.evaluate(event.model_dump(exclude_none=True))
    except AdmissionError as e:
        return PushEventResponse(admitted=False, reason=str(e))

    outcome = await manager.submit(admitted, wait=wait)
    response.status_code = 202
    return PushEventResponse(admitted=True, run=outcome.to_dict())
