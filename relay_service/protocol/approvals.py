"""In-process memory of "always approve" / "always decline" choices."""
from typing import Dict, Optional, Tuple

from relay_service.core.interfaces import ApprovalPolicy


class MemoryApprovalPolicy(ApprovalPolicy):
    def __init__(self):
        self._decisions: Dict[Tuple[Optional[str], str], bool] = {}

    def remembered(self, tool_name: str, server_label: Optional[str]) -> Optional[bool]:
        return self._decisions.get((server_label, tool_name))

    def remember(self, tool_name: str, server_label: Optional[str], approved: bool) -> None:
        self._decisions[(server_label, tool_name)] = approved


class AskEveryTimePolicy(ApprovalPolicy):
    def remembered(self, tool_name: str, server_label: Optional[str]) -> Optional[bool]:
        return None

    def remember(self, tool_name: str, server_label: Optional[str], approved: bool) -> None:
        pass
