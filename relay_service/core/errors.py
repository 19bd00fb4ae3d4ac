from typing import Any, Dict, List, Optional


class RelayError(Exception):
    """Base class for errors raised inside relay_service."""


class ConfigurationError(RelayError):
    """Tool configuration cannot be turned into a valid catalog."""

    def __init__(self, problems: List[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ArgumentParseError(RelayError):
    def __init__(self, call_id: str, detail: str):
        self.call_id = call_id
        self.detail = detail
        super().__init__(f"Arguments for call '{call_id}' are not valid JSON: {detail}")


class UpstreamFailure(RelayError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "unknown upstream failure")


class TurnCancelled(RelayError):
    """Raised internally when a wait is interrupted by turn cancellation."""


class ToolError(RelayError):
    """Recoverable tool failure; reported back to the model as a tool result."""

    def payload(self) -> Dict[str, Any]:
        return {"error": {"type": type(self).__name__, "message": str(self)}}


class ToolNotFound(ToolError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class ToolTimeout(ToolError):
    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Tool '{name}' timed out after {timeout} seconds")


class ToolExecutionError(ToolError):
    def __init__(self, name: str, detail: str):
        self.name = name
        super().__init__(f"Error running tool '{name}': {detail}")
