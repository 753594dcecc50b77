from fastapi import APIRouter

from . import permissions
from .admin import permissions as admin_permissions
from .clinic import staff_permissions as clinic_staff_permissions

router = APIRouter(prefix="/api")

_admin_routers = [
    admin_permissions.router,
]

_clinic_routers = [
    clinic_staff_permissions.router,
]

_public_routers = [
    permissions.router,
]

for _router in [*_admin_routers, *_clinic_routers, *_public_routers]:
    router.include_router(_router)
