from typing import Any, Dict, List

from relay_service.core.factory import load
from relay_service.core.logging import logger


class ToolRegistry:
    """Loads the client-local tools enabled in settings"""
    def __init__(self, registry_cfg: List[Dict[str, Any]], enabled: List[str]):
        self.tools: Dict[str, Any] = {}
        for tcfg in registry_cfg:
            name = tcfg.get("name")
            if name not in enabled:
                continue
            impl = tcfg.get("impl", "")
            args = tcfg.get("args", {}) or {}
            try:
                tool = load(impl, **args)
            except (ImportError, AttributeError, TypeError, ValueError) as e:
                logger.error(f"Skipping tool '{name}': cannot load {impl}: {e}")
                continue
            # registry name and approval flag come from settings
            if hasattr(tool, "_registry_name"):
                tool._registry_name = name
            if hasattr(tool, "_require_approval"):
                tool._require_approval = bool(tcfg.get("require_approval", False))
            self.tools[name] = tool

    def get(self, name: str) -> Any:
        return self.tools.get(name)

    def all(self) -> Dict[str, Any]:
        return self.tools
