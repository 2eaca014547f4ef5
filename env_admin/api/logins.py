"""
Environment login endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import AdminSystem, Principal, get_admin_system, require_admin
from .schemas import CreateLoginRequest, LoginCheckRequest, UpdateLoginRequest
from ..exceptions import NotFoundError


router = APIRouter()


@router.get("")
def list_logins(
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    return {"success": True, "logins": [l.to_public_dict() for l in system.access_manager.list_logins()]}


@router.get("/{login_id}")
def get_login(
    login_id: str,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    login = system.access_manager.get_login(login_id)
    if login is None:
        raise NotFoundError(f"Login not found: {login_id}")
    return {"success": True, "login": login.to_public_dict()}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_login(
    request: CreateLoginRequest,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    login = system.access_manager.create_login(
        request.username, request.password, request.environment_id, request.profile_id
    )
    return {"success": True, "login": login.to_public_dict()}


@router.put("/{login_id}")
def update_login(
    login_id: str,
    request: UpdateLoginRequest,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """Update a login; an explicit null ``profile_id`` detaches the profile"""
    changes = request.model_dump(exclude_unset=True)
    if changes.get("password") == "":
        del changes["password"]
    login = system.access_manager.update_login(login_id, **changes)
    return {"success": True, "login": login.to_public_dict()}


@router.delete("/{login_id}")
def delete_login(
    login_id: str,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    system.access_manager.delete_login(login_id)
    return {"success": True}


@router.post("/{login_id}/test")
def test_login(
    login_id: str,
    request: LoginCheckRequest,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """Run the full login authentication for a stored login"""
    return system.access_manager.test_login(login_id, request.password).to_dict()
