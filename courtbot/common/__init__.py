"""
Common utilities for the court reservation bot
"""
from .config import Config, load_config
from .errors import (
    CourtBotError,
    AuthError,
    UnlockTimeoutError,
    SlotResolutionError,
    SlotSelectionError,
    FrameNotFoundError,
    SessionInvalidated,
    APIError,
)
from .models import (
    ClaimStatus,
    ClaimRequest,
    ClaimOutcome,
    AttemptState,
    AttemptRecord,
    NavigationState,
    SessionMode,
    FallbackEvent,
    FallbackReason,
    PhaseTimings,
    RunReport,
    UnlockPollState,
    SessionSignal,
    SubmitResult,
    NotificationPayload,
)
from .classifier import classify, extract_result_text
from .notifications import NotificationManager
from .schedule import ScheduleTable, DEFAULT_SCHEDULE
from .scheduler import UnlockClock, PhaseTimer

__all__ = [
    "Config",
    "load_config",
    "CourtBotError",
    "AuthError",
    "UnlockTimeoutError",
    "SlotResolutionError",
    "SlotSelectionError",
    "FrameNotFoundError",
    "SessionInvalidated",
    "APIError",
    "ClaimStatus",
    "ClaimRequest",
    "ClaimOutcome",
    "AttemptState",
    "AttemptRecord",
    "NavigationState",
    "SessionMode",
    "FallbackEvent",
    "FallbackReason",
    "PhaseTimings",
    "RunReport",
    "UnlockPollState",
    "SessionSignal",
    "SubmitResult",
    "NotificationPayload",
    "classify",
    "extract_result_text",
    "NotificationManager",
    "ScheduleTable",
    "DEFAULT_SCHEDULE",
    "UnlockClock",
    "PhaseTimer",
]
