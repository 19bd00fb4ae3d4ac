from typing import Any, Dict, List

from fastapi import APIRouter, Request

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("")
def list_tools(request: Request) -> Dict[str, List[Dict[str, Any]]]:
    """List the client-local tools and their schemas."""
    svc = request.app.state.turn_svc
    return {"tools": svc.list_tools()}
