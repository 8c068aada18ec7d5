# scheduling_service/models/check_in.py
import enum
import uuid
from sqlalchemy import Column, String, DateTime, Enum, ForeignKey
from scheduling_service.db.base_class import Base
from scheduling_service.utils.intervals import utcnow


class CheckInType(str, enum.Enum):
    EVENT = "EVENT"
    SESSION = "SESSION"


class CheckInMethod(str, enum.Enum):
    QR_CODE = "QR_CODE"
    MANUAL = "MANUAL"
    BULK = "BULK"
    SELF_SERVICE = "SELF_SERVICE"


class CheckIn(Base):
    __tablename__ = "check_ins"

    id = Column(
        String, primary_key=True, default=lambda: f"chk_{uuid.uuid4().hex[:12]}"
    )
    registration_id = Column(String, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True, index=True)
    type = Column(Enum(CheckInType, name="check_in_type"), nullable=False, default=CheckInType.EVENT)
    method = Column(Enum(CheckInMethod, name="check_in_method"), nullable=False, default=CheckInMethod.MANUAL)
    checked_in_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    checked_in_by = Column(String, nullable=True)  # Staff member or system user
