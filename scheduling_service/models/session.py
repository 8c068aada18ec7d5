# scheduling_service/models/session.py
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, text
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class Session(Base):
    """
    A scheduled, time-bounded activity within an event.

    The window is half-open: [start_time, end_time).
    """
    __tablename__ = "sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"ses_{uuid.uuid4().hex[:12]}"
    )
    event_id = Column(String, nullable=False, index=True)  # No FK - events live in event-lifecycle DB
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    room = Column(String, nullable=True)
    # Physical seat count of the room, used for capacity conflict detection
    capacity = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
