"""
Exception hierarchy for the court reservation bot
"""
from typing import List, Optional, Sequence


class CourtBotError(Exception):
    """Base exception for all bot errors"""
    pass


class AuthError(CourtBotError):
    """Raised when an authenticated session cannot be established"""
    pass


class UnlockTimeoutError(CourtBotError):
    """Raised when the target date never became clickable within the max wait"""

    def __init__(
        self,
        message: str,
        attempt_count: int = 0,
        available: Optional[List[str]] = None,
        selector: Optional[str] = None,
        frame_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.attempt_count = attempt_count
        self.available = available or []
        self.selector = selector
        self.frame_url = frame_url


class SlotResolutionError(CourtBotError):
    """Raised when no slot id is recorded for a resource/day/time window"""

    def __init__(self, resource_id: str, day: str, time_window: str, valid_windows: Sequence[str]):
        self.resource_id = resource_id
        self.day = day
        self.time_window = time_window
        self.valid_windows = list(valid_windows)
        listed = ", ".join(self.valid_windows) if self.valid_windows else "none"
        super().__init__(
            f"No slot id for resource {resource_id}, {day}, {time_window}. "
            f"Valid time windows for {day}: {listed}"
        )


class SlotSelectionError(CourtBotError):
    """Raised when the form has no option matching the slot id or start time"""
    pass


class FrameNotFoundError(CourtBotError):
    """Raised when no frame matched a predicate before the timeout"""

    def __init__(self, message: str, frame_urls: Optional[List[str]] = None):
        super().__init__(message)
        self.frame_urls = frame_urls or []


class SessionInvalidated(CourtBotError):
    """An attempt's session was lost mid-run; recorded, never retried"""

    def __init__(self, reason: str, resource_id: Optional[str] = None, detail: Optional[str] = None):
        message = f"Session invalidated ({reason})"
        super().__init__(f"{message}: {detail}" if detail else message)
        self.reason = reason
        self.resource_id = resource_id


class APIError(CourtBotError):
    """Raised when the remote reservation endpoint returns an unusable response"""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
