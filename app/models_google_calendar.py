"""
Google Calendar Integration Models
One connected calendar per user; order reminders are written to it
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class GoogleCalendarIntegration(Base):
    __tablename__ = "google_calendar_integrations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    # Fernet-encrypted; tokens are obtained by the OAuth connect flow
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=False)  # naive UTC

    google_user_email = Column(String(255), nullable=True)
    google_calendar_id = Column(String(500), nullable=True)  # NULL = primary calendar

    # Order reminders are only synced while enabled
    calendar_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User")

    def token_needs_refresh(self, margin: timedelta, now: Optional[datetime] = None) -> bool:
        """True when the access token expires within `margin` of `now` (naive UTC)"""
        now = now or datetime.utcnow()
        return self.token_expires_at <= now + margin

    @property
    def calendar_id(self) -> str:
        return self.google_calendar_id or "primary"
