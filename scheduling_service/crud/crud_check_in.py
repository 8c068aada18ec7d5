# scheduling_service/crud/crud_check_in.py
from sqlalchemy.orm import Session
from .base import CRUDBase
from scheduling_service.models.check_in import CheckIn, CheckInType
from scheduling_service.schemas.session import CheckInCreate


class CRUDCheckIn(CRUDBase[CheckIn, CheckInCreate, CheckInCreate]):
    def has_session_check_in(self, db: Session, *, registration_id: str, session_id: str) -> bool:
        return (
            db.query(self.model.id)
            .filter(
                self.model.registration_id == registration_id,
                self.model.session_id == session_id,
                self.model.type == CheckInType.SESSION,
            )
            .first()
            is not None
        )


check_in = CRUDCheckIn(CheckIn)
