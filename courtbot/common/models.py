"""
Data models for the court reservation bot
"""
from datetime import datetime, date
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def day_name(value: date) -> str:
    """English day-of-week name, independent of the process locale"""
    return DAY_NAMES[value.weekday()]


class ClaimStatus(str, Enum):
    SUCCESS = "SUCCESS"
    SLOT_TAKEN = "SLOT_TAKEN"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    NOT_YET_AVAILABLE = "NOT_YET_AVAILABLE"
    UNKNOWN = "UNKNOWN"


class SessionMode(str, Enum):
    SHARED = "shared"
    ISOLATED = "isolated"


class AttemptState(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WITHHELD = "withheld"  # dead-man switch held back the submit
    SHADOW = "shadow"  # full flow, dry-run submit
    DRY_RUN = "dry_run"  # planned only


class NavigationState(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    DASHBOARD = "dashboard"
    CLAIM_SURFACE_OPEN = "claim_surface_open"
    RESOURCE_SELECTED = "resource_selected"
    CALENDAR_LOADED = "calendar_loaded"
    DATE_UNLOCK_PENDING = "date_unlock_pending"
    DATE_SELECTED = "date_selected"
    FORM_OPEN = "form_open"
    SLOT_SELECTED = "slot_selected"
    SUBMITTED = "submitted"
    SUCCESS = "success"
    FAILURE = "failure"


class FallbackReason(str, Enum):
    LOGIN_REDIRECT = "LOGIN_REDIRECT"
    AUTH_ERROR = "AUTH_ERROR"
    CSRF_ERROR = "CSRF_ERROR"


class ClaimRequest(BaseModel):
    """One resource/date/slot to claim. Built once per attempt."""
    model_config = ConfigDict(frozen=True)

    resource_id: str
    resource_name: str
    target_date: date
    time_window: str
    slot_id: str

    @property
    def day_name(self) -> str:
        return day_name(self.target_date)


class ClaimOutcome(BaseModel):
    """Classified remote response"""
    model_config = ConfigDict(frozen=True)

    status: ClaimStatus
    message: str
    raw_message: str = ""
    days: Optional[str] = None
    source: Optional[str] = None  # frame URL or endpoint the text came from

    @property
    def is_success(self) -> bool:
        return self.status == ClaimStatus.SUCCESS


class PhaseTimings(BaseModel):
    """Milliseconds relative to the unlock instant (or attempt start without one)"""
    unlock_ms: Optional[float] = None
    form_ready_ms: Optional[float] = None
    submit_ms: Optional[float] = None


class AttemptRecord(BaseModel):
    """Result of one claim attempt, successful or not"""
    model_config = ConfigDict(frozen=True)

    resource_id: str
    resource_name: str
    target_date: Optional[date] = None
    time_window: Optional[str] = None
    request: Optional[ClaimRequest] = None
    state: AttemptState
    outcome: Optional[ClaimOutcome] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    last_state: NavigationState = NavigationState.LOGGED_OUT
    selected_value: Optional[str] = None
    timings: PhaseTimings = Field(default_factory=PhaseTimings)
    session_reason: Optional[FallbackReason] = None

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.state in (AttemptState.FAILURE, AttemptState.WITHHELD)

    @property
    def summary(self) -> str:
        """Friendly one-line reason for this record"""
        if self.outcome is not None:
            return self.outcome.message
        if self.error_message:
            return f"{self.error_kind}: {self.error_message}" if self.error_kind else self.error_message
        if self.state == AttemptState.WITHHELD:
            return "Submission withheld: booking not allowed for this run"
        if self.state == AttemptState.SHADOW:
            return "Shadow run: flow completed without submitting"
        if self.state == AttemptState.DRY_RUN:
            return "Dry run: no browser actions taken"
        return self.state.value

    @classmethod
    def failure(
        cls,
        resource_id: str,
        resource_name: str,
        error: BaseException,
        request: Optional[ClaimRequest] = None,
        target_date: Optional[date] = None,
        time_window: Optional[str] = None,
        last_state: NavigationState = NavigationState.LOGGED_OUT,
        timings: Optional[PhaseTimings] = None,
        session_reason: Optional[FallbackReason] = None,
    ) -> "AttemptRecord":
        """Convert an exception raised inside an attempt into a record"""
        return cls(
            resource_id=resource_id,
            resource_name=resource_name,
            target_date=request.target_date if request else target_date,
            time_window=request.time_window if request else time_window,
            request=request,
            state=AttemptState.FAILURE,
            error_kind=type(error).__name__,
            error_message=str(error),
            last_state=last_state,
            timings=timings or PhaseTimings(),
            session_reason=session_reason,
        )


class UnlockPollState(BaseModel):
    """Progress of one unlock poll; only ever moves forward"""
    target_date: date
    selector: str
    max_wait_ms: int
    resource_id: Optional[str] = None
    elapsed_ms: float = 0
    attempt_count: int = 0
    available: List[str] = Field(default_factory=list)

    def advance(self, elapsed_ms: float):
        """Record one more poll iteration"""
        self.attempt_count += 1
        self.elapsed_ms = max(self.elapsed_ms, elapsed_ms)

    @property
    def timed_out(self) -> bool:
        return self.elapsed_ms >= self.max_wait_ms


class SessionSignal(BaseModel):
    """What a page looked like when checked for session loss"""
    url: str = ""
    body_text: str = ""


class FallbackEvent(BaseModel):
    """A detected session loss, recorded for the next run's session mode"""
    resource_id: str
    reason: FallbackReason
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class RunReport(BaseModel):
    """Aggregated outcome of one run, one record per attempted resource"""
    started_at: datetime = Field(default_factory=datetime.now)
    t0: Optional[datetime] = None
    skew_ms: float = 0
    session_mode: SessionMode = SessionMode.SHARED
    shadow: bool = False
    dry_run: bool = False
    allow_booking: bool = False
    records: List[AttemptRecord] = Field(default_factory=list)
    fallback_events: List[FallbackEvent] = Field(default_factory=list)
    recommended_session_mode: Optional[SessionMode] = None

    @property
    def successes(self) -> List[AttemptRecord]:
        return [r for r in self.records if r.succeeded]

    @property
    def failures(self) -> List[AttemptRecord]:
        return [r for r in self.records if r.is_failure]

    @property
    def is_test(self) -> bool:
        return self.shadow or self.dry_run

    @property
    def subject(self) -> str:
        """Summary line used as the notification title"""
        done = len(self.records) - len(self.failures)
        if self.records and not self.failures:
            subject = f"Reservations Confirmed ({done}/{len(self.records)})"
        elif done > 0:
            subject = f"Partial Success ({done}/{len(self.records)})"
        else:
            subject = "Reservation Failed"
        return f"[TEST] {subject}" if self.is_test else subject


class NotificationPayload(BaseModel):
    """Notification content"""
    title: str
    message: str
    url: Optional[str] = None
    urgency: str = "normal"  # low, normal, high
    report: Optional[RunReport] = None


class SubmitResult(BaseModel):
    """What the form submit did, or would have done in a dry run"""
    model_config = ConfigDict(frozen=True)

    submitted: bool
    slot_value: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
