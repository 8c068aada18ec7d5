# scheduling_service/crud/crud_resource.py
from typing import List
from sqlalchemy.orm import Session
from .base import CRUDBase
from scheduling_service.models.resource import Resource, SessionResource, ResourceBookingStatus
from scheduling_service.schemas.session import ResourceCreate, SessionResourceCreate


class CRUDResource(CRUDBase[Resource, ResourceCreate, ResourceCreate]):
    pass


class CRUDSessionResource(CRUDBase[SessionResource, SessionResourceCreate, SessionResourceCreate]):
    def get_active_by_sessions(self, db: Session, *, session_ids: List[str]) -> List[SessionResource]:
        """Bookings that still claim their resource (not cancelled, not bumped)."""
        if not session_ids:
            return []
        return (
            db.query(self.model)
            .filter(
                self.model.session_id.in_(session_ids),
                self.model.status.notin_(
                    [ResourceBookingStatus.CANCELLED, ResourceBookingStatus.CONFLICT]
                ),
            )
            .all()
        )

    def get_by_session_and_resource(
        self, db: Session, *, session_id: str, resource_id: str
    ) -> List[SessionResource]:
        return (
            db.query(self.model)
            .filter(
                self.model.session_id == session_id,
                self.model.resource_id == resource_id,
                self.model.status.notin_(
                    [ResourceBookingStatus.CANCELLED, ResourceBookingStatus.CONFLICT]
                ),
            )
            .all()
        )


resource = CRUDResource(Resource)
session_resource = CRUDSessionResource(SessionResource)
