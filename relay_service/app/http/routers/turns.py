import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from relay_service.core.descriptors import ToolsConfig
from relay_service.core.errors import ConfigurationError
from relay_service.core.logging import logger

router = APIRouter(prefix="/turns", tags=["turns"])

DISCONNECT_POLL_SEC = 1.0


class TurnRequest(BaseModel):
    messages: List[Dict[str, Any]] = Field(..., description="Conversation history, oldest first.")
    tools: Optional[ToolsConfig] = Field(None, description="Tool configuration; the service defaults apply when omitted.")
    turn_id: Optional[str] = Field(None, description="Client-chosen turn id, used for approval callbacks.")
    model: Optional[str] = Field(None, description="Overrides the configured model for this turn.")


class ApprovalBody(BaseModel):
    approved: bool
    reason: Optional[str] = None
    remember: bool = Field(False, description="Apply this decision to later calls of the same tool.")


async def _cancel_on_disconnect(request: Request, svc, turn_id: str):
    # covers quiet periods such as an approval wait, when no frame is being sent
    while True:
        await asyncio.sleep(DISCONNECT_POLL_SEC)
        if await request.is_disconnected():
            logger.info(f"Client disconnected: turn_id={turn_id}")
            svc.cancel(turn_id)
            return


@router.post("")
async def open_turn(request: Request, body: TurnRequest):
    svc = request.app.state.turn_svc
    if body.turn_id and svc.get(body.turn_id) is not None:
        raise HTTPException(status_code=409, detail=f"Turn '{body.turn_id}' is already active")
    try:
        turn = svc.open_turn(body.messages, tools_config=body.tools, turn_id=body.turn_id, model=body.model)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail={"message": "Invalid tool configuration", "problems": e.problems})
    except (ValueError, KeyError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid messages: {e}")
    logger.info(f"/turns called: turn_id={turn.turn_id}, messages={len(body.messages)}")

    async def event_generator():
        frames = svc.stream(turn)
        watcher = asyncio.create_task(_cancel_on_disconnect(request, svc, turn.turn_id))
        try:
            async for frame in frames:
                # Check disconnect BEFORE yielding
                if await request.is_disconnected():
                    logger.info(f"Client disconnected: turn_id={turn.turn_id}")
                    svc.cancel(turn.turn_id)
                    break
                yield frame
        except Exception as e:
            logger.exception(f"Exception in /turns stream: {e}")
            raise
        finally:
            watcher.cancel()
            await frames.aclose()

    async def release_turn():
        # the body may never be iterated if the client leaves first
        svc.close(turn)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"X-Turn-Id": turn.turn_id, "Cache-Control": "no-cache"},
        background=BackgroundTask(release_turn),
    )


@router.post("/{turn_id}/approvals/{call_id}")
async def resolve_approval(turn_id: str, call_id: str, body: ApprovalBody, request: Request):
    """Approve or decline a pending tool call. Repeated decisions are ignored."""
    svc = request.app.state.turn_svc
    try:
        resolved = svc.resolve_approval(turn_id, call_id, body.approved, reason=body.reason, remember=body.remember)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Turn '{turn_id}' not found")
    if resolved is None:
        return {"resolved": False, "call_id": call_id}
    return {"resolved": True, **resolved.to_dict()}


@router.delete("/{turn_id}")
async def cancel_turn(turn_id: str, request: Request):
    """Cancel a live turn."""
    svc = request.app.state.turn_svc
    if svc.get(turn_id) is None:
        raise HTTPException(status_code=404, detail=f"Turn '{turn_id}' not found")
    return {"cancelled": svc.cancel(turn_id), "turn_id": turn_id}
