"""
Turn orchestration: history -> upstream stream -> translator -> consumer,
pausing for approvals and local tool runs, and resuming the turn with their
results until the upstream completes, fails, or the turn is cancelled.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import anyio

from relay_service.core.catalog import ToolCatalog
from relay_service.core.errors import ToolNotFound, TurnCancelled
from relay_service.core.interfaces import ApprovalPolicy, ModelProvider
from relay_service.core.logging import logger
from relay_service.core.types import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalResponsePart,
    CallKind,
    Message,
    Role,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    TurnEvent,
    TurnEventType as E,
    TurnState as S,
)
from relay_service.protocol.accumulator import PartialJsonAccumulator
from relay_service.protocol.approvals import AskEveryTimePolicy
from relay_service.protocol.orchestration.approval_gate import ApprovalGate
from relay_service.protocol.orchestration.tool_dispatcher import ToolDispatcher
from relay_service.protocol.translator import EventTranslator


@dataclass
class TurnContext:
    """Everything one turn owns; built at turn start and dropped at its end."""

    turn_id: str
    history: List[Message]
    catalog: ToolCatalog
    gate: ApprovalGate
    accumulator: PartialJsonAccumulator
    translator: EventTranslator


@dataclass
class _QueuedCall:
    call: ToolCallPart
    needs_approval: bool = False


@dataclass
class _Segment:
    """Output of one upstream request, committed to history only when it ends cleanly."""

    parts: List[Any] = field(default_factory=list)
    text: Dict[Any, List[str]] = field(default_factory=dict)
    queue: List[_QueuedCall] = field(default_factory=list)
    completed: Optional[Dict[str, Any]] = None

    def flush_text(self) -> None:
        for chunks in self.text.values():
            if chunks:
                self.parts.append(TextPart("".join(chunks)))
        self.text.clear()


class TurnOrchestrator:
    def __init__(
        self,
        provider: ModelProvider,
        catalog: ToolCatalog,
        dispatcher: ToolDispatcher,
        history: Sequence[Message],
        turn_id: Optional[str] = None,
        instructions: Optional[str] = None,
        approval_policy: Optional[ApprovalPolicy] = None,
        max_tool_loops: int = 8,
        approval_timeout: Optional[float] = None,
        model: Optional[str] = None,
    ):
        self.provider = provider
        self.dispatcher = dispatcher
        self.instructions = instructions
        self.approval_policy = approval_policy or AskEveryTimePolicy()
        self.max_tool_loops = max_tool_loops
        self.approval_timeout = approval_timeout
        self.model = model

        accumulator = PartialJsonAccumulator()
        self.ctx = TurnContext(
            turn_id=turn_id or f"turn_{uuid.uuid4().hex}",
            history=list(history),
            catalog=catalog,
            gate=ApprovalGate(catalog),
            accumulator=accumulator,
            translator=EventTranslator(catalog, accumulator),
        )
        self.state: S = S.IDLE
        self.transitions: List[Tuple[S, S]] = []
        self._cancel_event = asyncio.Event()
        self._cancel_waiter: Optional[asyncio.Future] = None
        self._upstream: Optional[AsyncIterator[Dict[str, Any]]] = None
        self._read: Optional[asyncio.Future] = None
        self._orphans: set[asyncio.Future] = set()
        self._started = False

    # --- public surface ---

    @property
    def turn_id(self) -> str:
        return self.ctx.turn_id

    @property
    def history(self) -> Tuple[Message, ...]:
        return tuple(self.ctx.history)

    @property
    def gate(self) -> ApprovalGate:
        return self.ctx.gate

    def resolve_approval(
        self, call_id: str, approved: bool, reason: Optional[str] = None, remember: bool = False
    ) -> Optional[ApprovalRequest]:
        """Entry point for the user's decision. Safe to call repeatedly."""
        if self.state.terminal:
            logger.warning(f"Approval for {call_id} arrived after turn {self.turn_id} ended ({self.state})")
            return None
        request = self.ctx.gate.resolve(call_id, approved, reason)
        if request is not None and remember:
            self.approval_policy.remember(request.tool_name, request.server_label, approved)
        return request

    def cancel(self) -> bool:
        """
        Move to `cancelled` immediately. Buffered arguments and pending
        approvals are dropped here; the running stream notices the signal at
        its next suspension point and closes the upstream connection.
        """
        if self.state.terminal:
            return False
        logger.info(f"Cancelling turn {self.turn_id} from state {self.state}")
        self._cancel_event.set()
        self._transition(S.CANCELLED)
        self.ctx.accumulator.clear()
        dropped = self.ctx.gate.drop_all()
        if dropped:
            logger.info(f"Dropped {dropped} pending approval request(s) for turn {self.turn_id}")
        return True

    async def run(self) -> AsyncIterator[TurnEvent]:
        if self._started:
            raise RuntimeError(f"Turn {self.turn_id} has already been run")
        self._started = True
        logger.info(f"Turn started: turn_id={self.turn_id}, history={len(self.ctx.history)} messages")

        try:
            if self.state is S.CANCELLED:
                yield self._cancelled_event()
                return

            for loop_num in range(self.max_tool_loops):
                logger.debug(f"Turn {self.turn_id}: upstream request {loop_num + 1}/{self.max_tool_loops}")
                self._transition(S.STREAMING)
                segment = _Segment()
                async for event in self._stream_segment(segment):
                    yield event
                if self.state.terminal:
                    return

                self._commit_segment(segment)
                if not segment.queue:
                    self._transition(S.COMPLETED)
                    data = dict(segment.completed or {})
                    data["history"] = [m.to_dict() for m in self.ctx.history]
                    yield TurnEvent(E.TURN_COMPLETED, data)
                    return

                # calls are settled one at a time in the order they completed
                for queued in segment.queue:
                    try:
                        async for event in self._settle(queued):
                            yield event
                    except TurnCancelled:
                        yield self._cancelled_event()
                        return
                self.ctx.translator.reset()

            for event in self._fail(f"Tool loop limit ({self.max_tool_loops}) reached before the turn completed"):
                yield event
        except Exception as e:
            logger.exception(f"Turn {self.turn_id} failed: {e}")
            if not self.state.terminal:
                for event in self._fail(str(e) or type(e).__name__, error_type=type(e).__name__):
                    yield event
        finally:
            if not self.state.terminal:
                # consumer went away mid-turn
                self.cancel()
            await self._release()

    # --- streaming ---

    async def _stream_segment(self, segment: _Segment) -> AsyncIterator[TurnEvent]:
        translator = self.ctx.translator
        self._upstream = self.provider.stream(
            list(self.ctx.history),
            tools=self.ctx.catalog.to_upstream(),
            instructions=self.instructions,
            model=self.model,
        )
        try:
            while True:
                self._read = asyncio.ensure_future(_anext(self._upstream))
                try:
                    raw = await self._race(self._read)
                except StopAsyncIteration:
                    break
                except TurnCancelled:
                    yield self._cancelled_event()
                    return

                for event in translator.translate(raw):
                    if self._cancel_event.is_set():
                        yield self._cancelled_event()
                        return
                    if event.type is E.TURN_COMPLETED:
                        segment.completed = event.data
                        continue
                    if event.type is E.TURN_FAILED:
                        for tail in self._fail(event.data.get("message"), **_extra(event.data)):
                            yield tail
                        return
                    self._observe(event, segment)
                    yield event
                if segment.completed is not None:
                    break

            if segment.completed is None:
                logger.warning(f"Turn {self.turn_id}: upstream stream ended without a terminal event")
                for event in translator.flush():
                    if event.type is E.TURN_FAILED:
                        for tail in self._fail(event.data.get("message"), **_extra(event.data)):
                            yield tail
                        return
                    self._observe(event, segment)
                    yield event
        finally:
            await self._close_upstream()

    def _observe(self, event: TurnEvent, segment: _Segment) -> None:
        data = event.data
        if event.type is E.CONTENT_DELTA:
            segment.text.setdefault(data.get("item_id"), []).append(data["delta"])
        elif event.type is E.CONTENT_DONE:
            chunks = segment.text.pop(data.get("item_id"), None)
            text = data.get("text") or "".join(chunks or [])
            if text:
                segment.parts.append(TextPart(text))
        elif event.type is E.TOOL_CALL_READY:
            kind = CallKind(data["kind"])
            call = ToolCallPart(
                call_id=data["call_id"],
                name=data["name"],
                arguments=data.get("arguments"),
                server_label=data.get("server_label"),
                kind=kind,
                output=data.get("output"),
            )
            segment.parts.append(call)
            # mcp_call items were already executed upstream
            if kind is not CallKind.MCP_CALL:
                segment.queue.append(_QueuedCall(call))
        elif event.type is E.APPROVAL_REQUIRED:
            for queued in segment.queue:
                if queued.call.call_id == data["call_id"]:
                    queued.needs_approval = True
            request = self._open_approval(data)
            data["decision"] = str(request.decision)

    def _open_approval(self, data: Dict[str, Any]) -> ApprovalRequest:
        """Queue the request as soon as it is announced so the user can answer while the stream continues."""
        gate = self.ctx.gate
        request = gate.enqueue(ApprovalRequest(
            call_id=data["call_id"],
            tool_name=data["name"],
            server_label=data.get("server_label"),
            arguments=data.get("arguments"),
        ))
        remembered = self.approval_policy.remembered(request.tool_name, request.server_label)
        if remembered is not None:
            logger.info(f"Applying remembered decision for {request.tool_name}: approved={remembered}")
            reason = None if remembered else "Declined by a remembered preference."
            gate.resolve(request.call_id, remembered, reason=reason)
        return request

    def _commit_segment(self, segment: _Segment) -> None:
        segment.flush_text()
        if segment.parts:
            self.ctx.history.append(Message(Role.ASSISTANT, tuple(segment.parts)))

    # --- settling tool calls ---

    async def _settle(self, queued: _QueuedCall) -> AsyncIterator[TurnEvent]:
        if self._cancel_event.is_set():
            raise TurnCancelled()
        call = queued.call
        if queued.needs_approval:
            request = await self._await_approval(call)
            yield TurnEvent(E.APPROVAL_RESOLVED, request.to_dict())
            if request.decision is ApprovalDecision.DECLINED:
                result = self._declined_result(call, request.reason)
                self.ctx.history.append(result)
                yield TurnEvent(E.TOOL_CALL_OUTPUT, _output_data(result))
                self._transition(S.STREAMING)
                return

        self._transition(S.DISPATCHING_LOCAL_TOOL)
        if call.kind is CallKind.MCP_APPROVAL_REQUEST:
            # the upstream runs remote tools once it sees the approval
            message = Message(Role.TOOL, (ApprovalResponsePart(call.call_id, approved=True),))
        elif not self.ctx.catalog.is_local(call.name):
            # only functions offered in this turn's catalog may run
            error = ToolNotFound(call.name)
            logger.warning(f"Call {call.call_id} names {call.name!r}, which this turn does not offer")
            message = Message(Role.TOOL, (ToolResultPart(call.call_id, call.name, error.payload(), is_error=True),))
        else:
            task = asyncio.ensure_future(self.dispatcher.dispatch(call.name, call.arguments, call_id=call.call_id))
            outcome = await self._race(task, abandon=True)
            message = Message(Role.TOOL, (ToolResultPart(call.call_id, call.name, outcome.output, outcome.is_error),))
        self.ctx.history.append(message)
        self._transition(S.RESUMING)
        yield TurnEvent(E.TOOL_CALL_OUTPUT, _output_data(message))

    async def _await_approval(self, call: ToolCallPart) -> ApprovalRequest:
        self._transition(S.AWAITING_APPROVAL)
        gate = self.ctx.gate
        request = gate.get(call.call_id)
        waiting = gate.wait(call.call_id)
        if self.approval_timeout:
            waiting = asyncio.wait_for(waiting, timeout=self.approval_timeout)
        try:
            return await self._race(asyncio.ensure_future(waiting))
        except asyncio.TimeoutError:
            logger.warning(f"Approval for {call.call_id} timed out after {self.approval_timeout}s")
            gate.resolve(call.call_id, False, reason="approval timed out")
            return request

    @staticmethod
    def _declined_result(call: ToolCallPart, reason: Optional[str]) -> Message:
        if call.kind is CallKind.MCP_APPROVAL_REQUEST:
            return Message(Role.TOOL, (ApprovalResponsePart(call.call_id, approved=False, reason=reason),))
        payload = {"error": {"type": "ApprovalDeclined", "message": reason}}
        return Message(Role.TOOL, (ToolResultPart(call.call_id, call.name, payload, is_error=True),))

    # --- suspension points ---

    async def _race(self, task: asyncio.Future, abandon: bool = False) -> Any:
        """
        Await `task` unless the turn is cancelled first. With `abandon`, a
        task that loses the race keeps running and its result is discarded.
        """
        if self._cancel_waiter is None:
            self._cancel_waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({task, self._cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self._drop_task(task, abandon)
            raise
        if self._cancel_event.is_set():
            self._drop_task(task, abandon)
            raise TurnCancelled()
        return task.result()

    def _drop_task(self, task: asyncio.Future, abandon: bool) -> None:
        if task.done():
            if not task.cancelled():
                task.exception()
            return
        if abandon:
            self._orphans.add(task)
            task.add_done_callback(self._discard_orphan)
        else:
            task.cancel()

    def _discard_orphan(self, task: asyncio.Future) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.warning(f"Discarded tool run for cancelled turn {self.turn_id} failed: {task.exception()}")
        else:
            logger.info(f"Discarded tool result for cancelled turn {self.turn_id}")

    # --- terminal transitions ---

    def _transition(self, new: S) -> None:
        old = self.state
        if old == new:
            return
        if old.terminal:
            logger.debug(f"Turn {self.turn_id}: ignoring {old} -> {new}")
            return
        self.state = new
        self.transitions.append((old, new))
        logger.debug(f"Turn {self.turn_id}: {old} -> {new}")

    def _fail(self, message: Optional[str], **extra: Any) -> List[TurnEvent]:
        message = message or "unknown upstream failure"
        logger.error(f"Turn {self.turn_id} failed: {message}")
        self._transition(S.FAILED)
        data = {"message": message, **extra}
        return [TurnEvent(E.TURN_FAILED, data), TurnEvent(E.ERROR, dict(data))]

    def _cancelled_event(self) -> TurnEvent:
        return TurnEvent(E.TURN_CANCELLED, {"turn_id": self.turn_id, "message": "Turn cancelled"})

    async def _close_upstream(self) -> None:
        upstream, self._upstream = self._upstream, None
        read, self._read = self._read, None
        if upstream is None:
            return
        aclose = getattr(upstream, "aclose", None)
        if aclose is None:
            return
        with anyio.CancelScope(shield=True):
            if read is not None and not read.done():
                # a cancelled read must unwind before the generator can be closed
                await asyncio.wait({read})
            try:
                await aclose()
            except RuntimeError as e:
                # a cancelled read is still unwinding the generator
                logger.debug(f"Upstream close deferred for turn {self.turn_id}: {e}")

    async def _release(self) -> None:
        self.ctx.accumulator.clear()
        self.ctx.gate.drop_all()
        self.ctx.translator.reset()
        if self._cancel_waiter is not None and not self._cancel_waiter.done():
            self._cancel_waiter.cancel()
        await self._close_upstream()
        logger.info(f"Turn finished: turn_id={self.turn_id}, state={self.state}")


async def _anext(iterator: AsyncIterator[Any]) -> Any:
    return await iterator.__anext__()


def _extra(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k != "message"}


def _output_data(message: Message) -> Dict[str, Any]:
    part = message.parts[0]
    data = part.to_dict()
    data.pop("type", None)
    return data
