import datetime
import email.utils as eut
from typing import Any, Dict, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from relay_service.tools.base import BaseTool


TIMEZONE_ALIASES = {
    "eastern": "America/New_York",
    "central": "America/Chicago",
    "mountain": "America/Denver",
    "pacific": "America/Los_Angeles",
    "est": "America/New_York",
    "cst": "America/Chicago",
    "mst": "America/Denver",
    "pst": "America/Los_Angeles",
    "uk": "Europe/London",
    "london": "Europe/London",
}


class TimeTool(BaseTool):
    """
    Get the current time for a timezone in various formats.
    """

    def __init__(self):
        super().__init__()

    async def run(
        self,
        timezone: Optional[str] = "UTC",
        format: Literal["iso", "rfc2822", "human"] = "human",
    ) -> Dict[str, Any]:
        """
        Get the current time for a timezone in various formats.
        Args:
            timezone: IANA timezone (e.g., Europe/Dublin, America/New_York, UTC). Defaults to UTC.
            format: The format for the returned time string (iso, rfc2822 or human).
        Returns:
            dict: {"time": <formatted time string>, "timezone": <resolved zone>}
        """
        timezone = timezone or "UTC"
        timezone = TIMEZONE_ALIASES.get(timezone.lower(), timezone)

        try:
            now = datetime.datetime.now(ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError):
            return {"time": None, "error": f"Unknown timezone: {timezone}"}

        if format == "iso":
            return {"time": now.isoformat(), "timezone": timezone}
        if format == "rfc2822":
            return {"time": eut.format_datetime(now), "timezone": timezone}

        time_str = now.strftime("%I:%M:%S %p")
        date_str = now.strftime("%A, %B %d, %Y")
        readable_tz = timezone.replace("_", " ").replace("/", ", ")
        return {"time": f"{time_str} on {date_str} ({now.strftime('%Z')} - {readable_tz})", "timezone": timezone}
