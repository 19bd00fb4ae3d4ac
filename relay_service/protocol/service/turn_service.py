from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from pydantic import ValidationError

from relay_service.core.catalog import ToolCatalog, ToolCatalogBuilder
from relay_service.core.descriptors import ToolsConfig
from relay_service.core.errors import ConfigurationError
from relay_service.core.interfaces import ApprovalPolicy, ModelProvider, Tool
from relay_service.core.logging import logger
from relay_service.core.types import ApprovalRequest, Message
from relay_service.protocol.orchestration.emitter import SseEmitter
from relay_service.protocol.orchestration.orchestrator import TurnOrchestrator
from relay_service.protocol.orchestration.tool_dispatcher import ToolDispatcher


class TurnService:
    def __init__(
        self,
        provider: ModelProvider,
        tools: Dict[str, Tool],
        settings: Dict[str, Any],
        approval_policy: Optional[ApprovalPolicy] = None,
    ):
        """Initialize with provider, local tools, settings, and the shared approval policy"""
        self.provider = provider
        self.tools = tools
        self.settings = settings
        self.approval_policy = approval_policy
        self.system_prompt = (settings.get("system", {}) or {}).get("prompt", "") or None

        limits = settings.get("limits", {}) or {}
        self.tool_timeout = float(limits.get("tool_timeout_sec", 10))
        self.max_tool_loops = int(limits.get("max_tool_loops", 8))
        timeout = limits.get("approval_timeout_sec")
        self.approval_timeout = float(timeout) if timeout else None

        self.catalog_builder = ToolCatalogBuilder(tools)
        self.dispatcher = ToolDispatcher(tools, timeout=self.tool_timeout)
        self._turns: Dict[str, TurnOrchestrator] = {}

    # --- Turn lifecycle ---

    def default_tools_config(self) -> ToolsConfig:
        defaults = (self.settings.get("tools", {}) or {}).get("defaults", {}) or {}
        try:
            return ToolsConfig.model_validate(defaults)
        except ValidationError as e:
            raise ConfigurationError([f"tools.defaults: {err['msg']}" for err in e.errors()]) from e

    def build_catalog(self, tools_config: Optional[ToolsConfig] = None) -> ToolCatalog:
        return self.catalog_builder.build(tools_config or self.default_tools_config())

    def open_turn(
        self,
        messages: Sequence[Dict[str, Any] | Message],
        tools_config: Optional[ToolsConfig] = None,
        turn_id: Optional[str] = None,
        model: Optional[str] = None,
    ) -> TurnOrchestrator:
        """
        Validate the request and register a new turn. Configuration problems
        raise ConfigurationError here, before anything is streamed.
        """
        if turn_id and turn_id in self._turns:
            raise ValueError(f"Turn '{turn_id}' is already active")
        history = [m if isinstance(m, Message) else Message.from_dict(m) for m in messages]
        if not history:
            raise ValueError("A turn needs at least one message")

        turn = TurnOrchestrator(
            provider=self.provider,
            catalog=self.build_catalog(tools_config),
            dispatcher=self.dispatcher,
            history=history,
            turn_id=turn_id,
            instructions=self.system_prompt,
            approval_policy=self.approval_policy,
            max_tool_loops=self.max_tool_loops,
            approval_timeout=self.approval_timeout,
            model=model,
        )
        self._turns[turn.turn_id] = turn
        logger.info(f"Turn opened: turn_id={turn.turn_id}, active={len(self._turns)}")
        return turn

    async def stream(self, turn: TurnOrchestrator) -> AsyncGenerator[bytes, None]:
        """Drive a turn and encode its events as text-stream frames"""
        emitter = SseEmitter()
        try:
            async for event in turn.run():
                yield emitter.emit(event)
            yield emitter.done()
        finally:
            self.close(turn)

    def close(self, turn: TurnOrchestrator) -> None:
        """
        Deregister a turn, cancelling it if it never reached a terminal state.
        Safe to call more than once, and also for a turn whose stream was never
        started.
        """
        if self._turns.get(turn.turn_id) is turn:
            del self._turns[turn.turn_id]
            turn.cancel()
            logger.info(f"Turn closed: turn_id={turn.turn_id}, state={turn.state}")

    def get(self, turn_id: str) -> Optional[TurnOrchestrator]:
        return self._turns.get(turn_id)

    @property
    def active_turns(self) -> List[str]:
        return list(self._turns)

    def resolve_approval(
        self, turn_id: str, call_id: str, approved: bool, reason: Optional[str] = None, remember: bool = False
    ) -> Optional[ApprovalRequest]:
        """Raises KeyError for an unknown turn; returns None for an unknown or already decided call."""
        turn = self._turns.get(turn_id)
        if turn is None:
            raise KeyError(turn_id)
        return turn.resolve_approval(call_id, approved, reason=reason, remember=remember)

    def cancel(self, turn_id: str) -> bool:
        turn = self._turns.get(turn_id)
        if turn is None:
            return False
        return turn.cancel()

    def cancel_all(self) -> int:
        return sum(1 for turn in list(self._turns.values()) if turn.cancel())

    # --- Tool listing ---

    def list_tools(self) -> List[Dict[str, Any]]:
        """Schemas of the client-local tools, as offered upstream."""
        return [
            {"name": name, "require_approval": tool.require_approval, "schema": tool.schema}
            for name, tool in self.tools.items()
        ]
