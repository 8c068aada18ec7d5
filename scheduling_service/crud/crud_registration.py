# scheduling_service/crud/crud_registration.py
from typing import List
from sqlalchemy.orm import Session
from .base import CRUDBase
from scheduling_service.models.registration import Registration
from scheduling_service.schemas.session import RegistrationCreate


class CRUDRegistration(CRUDBase[Registration, RegistrationCreate, RegistrationCreate]):
    def get_by_event(self, db: Session, *, event_id: str) -> List[Registration]:
        return db.query(self.model).filter(self.model.event_id == event_id).all()


registration = CRUDRegistration(Registration)
