# scheduling_service/crud/__init__.py

from .crud_session import session
from .crud_registration import registration
from .crud_resource import resource, session_resource
from .crud_check_in import check_in
from .crud_session_capacity import session_capacity_crud
from .crud_session_registration import session_registration
from .crud_schedule_conflict import schedule_conflict
from .crud_session_prerequisite import session_prerequisite, session_dependency
