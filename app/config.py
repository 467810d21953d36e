import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./reviewpilot.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Google Calendar OAuth Configuration
# Tokens are obtained out of band; the engine only refreshes them
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

# Order lifecycle automation
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Kolkata")
ALERTING_INTERVAL_MINUTES = int(os.getenv("ALERTING_INTERVAL_MINUTES", "60"))
DAILY_PASS_HOUR = int(os.getenv("DAILY_PASS_HOUR", "9"))
DAILY_PASS_MINUTE = int(os.getenv("DAILY_PASS_MINUTE", "0"))
STARTUP_PASS_DELAY_SECONDS = int(os.getenv("STARTUP_PASS_DELAY_SECONDS", "5"))
CALENDAR_HTTP_TIMEOUT = float(os.getenv("CALENDAR_HTTP_TIMEOUT", "10"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# Shared secret for the manual trigger endpoint (unset = open, dev only)
CRON_SECRET = os.getenv("CRON_SECRET")


@dataclass(frozen=True)
class AutomationSettings:
    """Values the lifecycle engine and scheduler are constructed with"""

    timezone: str = APP_TIMEZONE
    alerting_interval_minutes: int = ALERTING_INTERVAL_MINUTES
    daily_pass_hour: int = DAILY_PASS_HOUR
    daily_pass_minute: int = DAILY_PASS_MINUTE
    startup_pass_delay_seconds: int = STARTUP_PASS_DELAY_SECONDS
    calendar_http_timeout: float = CALENDAR_HTTP_TIMEOUT


def get_automation_settings() -> AutomationSettings:
    return AutomationSettings()
