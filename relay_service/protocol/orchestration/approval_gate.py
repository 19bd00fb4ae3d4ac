import asyncio
from typing import Dict, Optional

from relay_service.core.catalog import ToolCatalog
from relay_service.core.logging import logger
from relay_service.core.types import ApprovalDecision, ApprovalRequest


class ApprovalGate:
    """
    Tracks approval requests for one turn. Each request moves from pending
    to approved or declined exactly once; later decisions are ignored.
    The gate never decides whether approval is needed; it only refuses
    requests for tools the catalog did not flag.
    """

    def __init__(self, catalog: ToolCatalog):
        self.catalog = catalog
        self._requests: Dict[str, ApprovalRequest] = {}
        self._waiters: Dict[str, asyncio.Future] = {}

    def enqueue(self, request: ApprovalRequest) -> ApprovalRequest:
        if not self.catalog.requires_approval(request.tool_name, request.server_label):
            raise ValueError(
                f"Tool '{request.tool_name}' (server={request.server_label}) does not require approval"
            )
        if request.call_id in self._requests:
            logger.warning(f"Approval request for call {request.call_id} already queued")
            return self._requests[request.call_id]
        self._requests[request.call_id] = request
        logger.info(f"Approval requested: call_id={request.call_id}, tool={request.tool_name}, server={request.server_label}")
        return request

    def get(self, call_id: str) -> Optional[ApprovalRequest]:
        return self._requests.get(call_id)

    @property
    def pending(self) -> Dict[str, ApprovalRequest]:
        return {cid: r for cid, r in self._requests.items() if not r.resolved}

    def resolve(self, call_id: str, approved: bool, reason: Optional[str] = None) -> Optional[ApprovalRequest]:
        """
        Record a decision. Returns the resolved request, or None when the call
        is unknown or was already decided.
        """
        request = self._requests.get(call_id)
        if request is None:
            logger.warning(f"Approval decision for unknown call {call_id}; ignoring")
            return None
        if request.resolved:
            logger.warning(f"Duplicate approval decision for call {call_id} (already {request.decision}); ignoring")
            return None

        if approved:
            request.decision = ApprovalDecision.APPROVED
        else:
            request.decision = ApprovalDecision.DECLINED
            request.reason = reason or f"The user declined to run '{request.tool_name}'."
        logger.info(f"Approval resolved: call_id={call_id}, decision={request.decision}")

        waiter = self._waiters.get(call_id)
        if waiter is not None and not waiter.done():
            waiter.set_result(request)
        return request

    async def wait(self, call_id: str) -> ApprovalRequest:
        request = self._requests[call_id]
        if request.resolved:
            return request
        waiter = self._waiters.get(call_id)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[call_id] = waiter
        return await asyncio.shield(waiter)

    def drop_all(self) -> int:
        """Forget every pending request without resolving it."""
        dropped = len(self.pending)
        for waiter in self._waiters.values():
            if not waiter.done():
                waiter.cancel()
        self._waiters.clear()
        self._requests.clear()
        return dropped
