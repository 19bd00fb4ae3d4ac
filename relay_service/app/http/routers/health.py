from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz(request: Request):
    svc = request.app.state.turn_svc
    return {"ok": True, "active_turns": len(svc.active_turns)}
