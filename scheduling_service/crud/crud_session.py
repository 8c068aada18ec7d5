# scheduling_service/crud/crud_session.py
from typing import List
from sqlalchemy.orm import Session
from .base import CRUDBase
from scheduling_service.models.session import Session as SessionModel
from scheduling_service.schemas.session import SessionCreate, SessionUpdate


class CRUDSession(CRUDBase[SessionModel, SessionCreate, SessionUpdate]):
    def get_active_by_event(self, db: Session, *, event_id: str) -> List[SessionModel]:
        return (
            db.query(self.model)
            .filter(self.model.event_id == event_id, self.model.is_active == True)
            .order_by(self.model.start_time.asc())
            .all()
        )


session = CRUDSession(SessionModel)
