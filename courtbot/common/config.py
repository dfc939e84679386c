"""
Configuration management for the court reservation bot
"""
import os
import yaml
from pathlib import Path
from datetime import date, time
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator
from dateutil import parser as date_parser
import pytz

from .models import SessionMode, DAY_NAMES


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class CredentialsConfig(FrozenModel):
    username: str
    password: str


class SiteConfig(FrozenModel):
    base_url: str = "https://parquesdelsol.sasweb.net/"
    api_url: str = "https://www.sasweb.net/utilities/process/app/poster.php"
    condo_id: str = "16"
    # Whether claims need the browser session cookie. The mobile endpoint
    # accepts credentialed requests on its own; the web form has only been
    # observed working with a session.
    session_required: bool = True


class ResourceConfig(FrozenModel):
    id: str
    name: str
    days_ahead: int
    slots: Dict[str, str] = Field(default_factory=dict)

    @field_validator("slots")
    @classmethod
    def check_days(cls, v: Dict[str, str]) -> Dict[str, str]:
        unknown = [day for day in v if day not in DAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown day names in slots: {', '.join(unknown)}")
        return v

    def window_for(self, day: str) -> Optional[str]:
        return self.slots.get(day)


def default_resources() -> List[ResourceConfig]:
    weekday_six = {day: "06:00 AM - 07:00 AM" for day in DAY_NAMES[:5]}
    return [
        ResourceConfig(
            id="5",
            name="Cancha de Tenis 1",
            days_ahead=9,
            slots={**weekday_six, "Saturday": "09:00 AM - 10:00 AM"},
        ),
        ResourceConfig(
            id="7",
            name="Cancha de Tenis 2",
            days_ahead=8,
            slots={day: "07:00 AM - 08:00 AM" for day in DAY_NAMES[1:5]},
        ),
    ]


class ScheduleConfig(FrozenModel):
    timezone: str = "America/Costa_Rica"
    unlock_time: str = "00:00:00"
    login_lead_ms: int = 30000
    progress_interval_s: float = 10.0

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        pytz.timezone(v)
        return v

    @property
    def unlock_clock_time(self) -> time:
        return date_parser.parse(self.unlock_time).time()


class TimingConfig(FrozenModel):
    poll_interval_ms: int = 180
    unlock_max_ms: int = 15000
    nav_ms: int = 10000
    selector_ms: int = 5000
    login_timeout_ms: int = 30000
    day_view_timeout_ms: int = 4500
    result_timeout_ms: int = 10000
    stagger_ms: int = 100


class RunConfig(FrozenModel):
    session_mode: SessionMode = SessionMode.SHARED
    dry_run: bool = False
    shadow: bool = False
    allow_booking: bool = False
    debug: bool = False
    wait_for_unlock: bool = True
    target_date: Optional[str] = None
    time_overrides: Dict[str, str] = Field(default_factory=dict)
    skip: List[str] = Field(default_factory=list)

    @property
    def target(self) -> Optional[date]:
        if not self.target_date:
            return None
        return date_parser.parse(self.target_date).date()


class BrowserConfig(FrozenModel):
    headless: bool = True
    user_agent: Optional[str] = None
    block_resources: bool = True
    debug_dir: str = "screenshots"
    # above 0, clickable calendar days stay locked this long after each
    # calendar load so the unlock poll can be rehearsed at any hour
    mock_unlock_ms: int = 0


class EmailConfig(FrozenModel):
    enabled: bool = False
    address: Optional[str] = None
    from_address: str = "Tennis Reservations <reservations@localhost>"
    resend_api_key: Optional[str] = None


class WebhookConfig(FrozenModel):
    enabled: bool = False
    url: Optional[str] = None


class NotificationsConfig(FrozenModel):
    email: EmailConfig = Field(default_factory=EmailConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class LoggingConfig(FrozenModel):
    level: str = "INFO"
    file: Optional[str] = "courtbot.log"


class Config(FrozenModel):
    """Main configuration class"""
    credentials: CredentialsConfig
    site: SiteConfig = Field(default_factory=SiteConfig)
    resources: List[ResourceConfig] = Field(default_factory=default_resources)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def resource(self, resource_id: str) -> ResourceConfig:
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        raise KeyError(f"Unknown resource: {resource_id}")

    def with_run(self, **changes) -> "Config":
        """Copy with run options replaced (used for command-line overrides)"""
        run = RunConfig(**{**self.run.model_dump(), **changes})
        return self.model_copy(update={"run": run})

    def with_timing(self, **changes) -> "Config":
        timing = TimingConfig(**{**self.timing.model_dump(), **changes})
        return self.model_copy(update={"timing": timing})

    def with_browser(self, **changes) -> "Config":
        browser = BrowserConfig(**{**self.browser.model_dump(), **changes})
        return self.model_copy(update={"browser": browser})

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from YAML file"""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        run = {
            "session_mode": os.environ.get("SESSION_MODE", "shared"),
            "shadow": os.environ.get("SHADOW_MODE") == "1",
            "allow_booking": os.environ.get("ALLOW_BOOKING") == "1",
            "debug": os.environ.get("DEBUG_MODE") == "true",
        }
        timing = {
            key: int(os.environ[env])
            for key, env in (
                ("unlock_max_ms", "UNLOCK_MAX_MS"),
                ("poll_interval_ms", "UNLOCK_POLL_MS"),
                ("nav_ms", "NAV_MS"),
                ("selector_ms", "SEL_MS"),
                ("day_view_timeout_ms", "DAY_VIEW_TIMEOUT_MS"),
            )
            if env in os.environ
        }
        schedule = {}
        if "LOGIN_LEAD_MS" in os.environ:
            schedule["login_lead_ms"] = int(os.environ["LOGIN_LEAD_MS"])
        browser = {}
        if "MOCK_UNLOCK_MS" in os.environ:
            browser["mock_unlock_ms"] = int(os.environ["MOCK_UNLOCK_MS"])

        email = EmailConfig(
            enabled=bool(os.environ.get("RESEND_API_KEY")),
            address=os.environ.get("TO_EMAIL_ADDRESS"),
            resend_api_key=os.environ.get("RESEND_API_KEY"),
        )
        return cls(
            credentials=CredentialsConfig(
                username=os.environ["TENNIS_USERNAME"],
                password=os.environ["TENNIS_PASSWORD"],
            ),
            schedule=ScheduleConfig(**schedule),
            timing=TimingConfig(**timing),
            run=RunConfig(**run),
            browser=BrowserConfig(**browser),
            notifications=NotificationsConfig(email=email),
        )

    def to_yaml(self, path: str | Path):
        """Save configuration to YAML file"""
        path = Path(path)
        with open(path, 'w') as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file or environment"""
    if path:
        return Config.from_yaml(path)

    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".courtbot" / "config.yaml",
    ]

    for p in default_paths:
        if p.exists():
            return Config.from_yaml(p)

    try:
        return Config.from_env()
    except KeyError as e:
        raise RuntimeError(
            f"No config file found and missing environment variable: {e}. "
            f"Create config/config.yaml or set TENNIS_USERNAME and TENNIS_PASSWORD."
        )
