from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from relay_service.core.types import Message


class ModelProvider(ABC):
    @abstractmethod
    def stream(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        instructions: Optional[str] = None,
        model: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Open one upstream streaming request and yield its raw events as dicts
        carrying a `type` discriminant. `model` overrides the configured model
        for this request. Closing the iterator must close the upstream connection.
        """
        ...


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def schema(self) -> Dict[str, Any]:
        ...

    @property
    def require_approval(self) -> bool:
        return False

    @abstractmethod
    async def run(self, *args, **kwargs) -> Any:
        ...


class ApprovalPolicy(ABC):
    """Cross-turn approval preferences, consulted when a request is created."""

    @abstractmethod
    def remembered(self, tool_name: str, server_label: Optional[str]) -> Optional[bool]:
        """Return a stored decision for this tool, or None to ask the user."""
        ...

    @abstractmethod
    def remember(self, tool_name: str, server_label: Optional[str], approved: bool) -> None:
        ...
