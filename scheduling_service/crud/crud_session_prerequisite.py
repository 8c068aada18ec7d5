# scheduling_service/crud/crud_session_prerequisite.py
from typing import List, Optional
from sqlalchemy.orm import Session

from .base import CRUDBase
from scheduling_service.models.session import Session as SessionModel
from scheduling_service.models.session_prerequisite import SessionPrerequisite, SessionDependency
from scheduling_service.schemas.prerequisite import PrerequisiteCreate, DependencyCreate


class CRUDSessionPrerequisite(CRUDBase[SessionPrerequisite, PrerequisiteCreate, PrerequisiteCreate]):
    def get_by_session(self, db: Session, *, session_id: str) -> List[SessionPrerequisite]:
        """Active prerequisites of a session in evaluation order."""
        return (
            db.query(self.model)
            .filter(self.model.session_id == session_id, self.model.is_active == True)
            .order_by(self.model.priority.asc(), self.model.created_at.asc())
            .all()
        )

    def get_by_event(self, db: Session, *, event_id: str) -> List[SessionPrerequisite]:
        return (
            db.query(self.model)
            .join(SessionModel, SessionModel.id == self.model.session_id)
            .filter(SessionModel.event_id == event_id, self.model.is_active == True)
            .all()
        )


class CRUDSessionDependency(CRUDBase[SessionDependency, DependencyCreate, DependencyCreate]):
    def get_edge(
        self, db: Session, *, parent_session_id: str, dependent_session_id: str
    ) -> Optional[SessionDependency]:
        return (
            db.query(self.model)
            .filter(
                self.model.parent_session_id == parent_session_id,
                self.model.dependent_session_id == dependent_session_id,
            )
            .first()
        )

    def get_by_dependent(self, db: Session, *, session_id: str) -> List[SessionDependency]:
        """Edges pointing at a session (its parents)."""
        return db.query(self.model).filter(self.model.dependent_session_id == session_id).all()

    def get_by_event(self, db: Session, *, event_id: str) -> List[SessionDependency]:
        """Edges whose dependent session belongs to the event."""
        return (
            db.query(self.model)
            .join(SessionModel, SessionModel.id == self.model.dependent_session_id)
            .filter(SessionModel.event_id == event_id)
            .order_by(self.model.created_at.asc())
            .all()
        )


session_prerequisite = CRUDSessionPrerequisite(SessionPrerequisite)
session_dependency = CRUDSessionDependency(SessionDependency)
