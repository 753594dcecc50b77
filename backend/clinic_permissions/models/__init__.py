from .base import Base
from .user import User
from .clinic import Clinic
from .clinic_permission import ClinicPermission
from .staff_permission import StaffPermission
from .audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "Clinic",
    "ClinicPermission",
    "StaffPermission",
    "AuditLog",
]
