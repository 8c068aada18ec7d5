# scheduling_service/models/__init__.py
# Import all models so Base.metadata knows every table.
# Order matters for foreign keys - import base models first

from scheduling_service.db.base_class import Base
from scheduling_service.models.session import Session
from scheduling_service.models.registration import Registration
from scheduling_service.models.resource import Resource, SessionResource
from scheduling_service.models.check_in import CheckIn
from scheduling_service.models.session_capacity import SessionCapacity
from scheduling_service.models.session_registration import SessionRegistration
from scheduling_service.models.schedule_conflict import ScheduleConflict, ConflictResolution
from scheduling_service.models.session_prerequisite import SessionPrerequisite, SessionDependency
