from importlib import import_module
from typing import Any, Dict, Optional, cast
import inspect

from relay_service.core.config import load_settings
from relay_service.core.interfaces import ApprovalPolicy, ModelProvider


def load(dotted: str, **kwargs: Any) -> Any:
    """Import a dotted path and instantiate the class if callable.
    Filters kwargs to match the constructor signature (unless **kwargs is accepted)."""
    module, cls = dotted.rsplit(".", 1)
    mod = import_module(module)
    obj = getattr(mod, cls)

    if isinstance(obj, type):
        sig = inspect.signature(obj.__init__)
        params = list(sig.parameters.values())
        accepts_kwargs = any(p.kind == p.VAR_KEYWORD for p in params)
        if accepts_kwargs:
            return obj(**kwargs)
        allowed = {p.name for p in params if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY) and p.name != "self"}
        filtered = {k: v for k, v in kwargs.items() if k in allowed}
        return obj(**filtered)

    return obj


class ServiceFactory:
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_settings()
        self._provider: ModelProvider | None = None
        self._policy: ApprovalPolicy | None = None

    def get_provider(self) -> ModelProvider:
        if not self._provider:
            model_cfg = self.config.get("providers", {}).get("model", {})
            impl = model_cfg.get("impl")
            args = model_cfg.get("args", {}) or {}
            self._provider = cast(ModelProvider, load(impl, **args))
        return self._provider

    def get_approval_policy(self) -> ApprovalPolicy:
        if not self._policy:
            from relay_service.protocol.approvals import MemoryApprovalPolicy

            self._policy = MemoryApprovalPolicy()
        return self._policy

    def get_turn_service(self):
        from relay_service.core.tool_registry import ToolRegistry
        from relay_service.protocol.service.turn_service import TurnService

        tools_cfg = self.config.get("tools", {}) or {}
        registry = ToolRegistry(tools_cfg.get("registry", []) or [], tools_cfg.get("enabled", []) or [])

        return TurnService(
            provider=self.get_provider(),
            tools=registry.all(),
            settings=self.config,
            approval_policy=self.get_approval_policy(),
        )
