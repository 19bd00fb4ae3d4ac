import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from relay_service.core.errors import ToolError, ToolExecutionError, ToolNotFound, ToolTimeout
from relay_service.core.interfaces import Tool
from relay_service.core.logging import logger


@dataclass
class ToolOutcome:
    name: str
    output: Any
    is_error: bool = False
    call_id: Optional[str] = None


class ToolDispatcher:
    """Executes client-local tools by exact name, with a timeout"""

    def __init__(self, tools: Dict[str, Tool], timeout: float = 10.0):
        self.tools = tools
        self.timeout = timeout

    async def run(self, name: str, args: Any) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise ToolExecutionError(name, f"arguments must be a JSON object, got {type(args).__name__}")
        # strict schemas send null for omitted optional parameters
        kwargs = {k: v for k, v in args.items() if v is not None}
        try:
            return await asyncio.wait_for(tool.run(**kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolTimeout(name, self.timeout) from e
        except ToolError:
            raise
        except Exception as e:
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e

    async def dispatch(self, name: str, args: Any, call_id: Optional[str] = None) -> ToolOutcome:
        """Run a tool and fold any failure into an error outcome."""
        try:
            result = await self.run(name, args)
        except ToolError as e:
            logger.warning(f"Tool {name} failed (call_id={call_id}): {e}")
            return ToolOutcome(name=name, output=e.payload(), is_error=True, call_id=call_id)
        logger.info(f"Tool executed: {name} (call_id={call_id})")
        return ToolOutcome(name=name, output=result, call_id=call_id)
