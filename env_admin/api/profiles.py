"""
Access profile endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import AdminSystem, Principal, get_admin_system, require_permission
from .schemas import CreateProfileRequest, UpdateProfileRequest
from ..access import Permission
from ..exceptions import NotFoundError


router = APIRouter()

can_manage_profiles = require_permission(Permission.CREATE_PROFILES)


@router.get("")
def list_profiles(
    principal: Principal = Depends(can_manage_profiles),
    system: AdminSystem = Depends(get_admin_system)
):
    return {"success": True, "perfis": [p.to_dict() for p in system.access_manager.list_profiles()]}


@router.get("/permissions")
def list_permissions(principal: Principal = Depends(can_manage_profiles)):
    """Every capability flag a profile can carry"""
    return {"success": True, "permissoes": [p.value for p in Permission]}


@router.get("/{profile_id}")
def get_profile(
    profile_id: str,
    principal: Principal = Depends(can_manage_profiles),
    system: AdminSystem = Depends(get_admin_system)
):
    profile = system.access_manager.get_profile(profile_id)
    if profile is None:
        raise NotFoundError(f"Profile not found: {profile_id}")
    return {"success": True, "perfil": profile.to_dict()}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_profile(
    request: CreateProfileRequest,
    principal: Principal = Depends(can_manage_profiles),
    system: AdminSystem = Depends(get_admin_system)
):
    profile = system.access_manager.create_profile(request.name, request.permissions)
    return {"success": True, "perfil": profile.to_dict()}


@router.put("/{profile_id}")
def update_profile(
    profile_id: str,
    request: UpdateProfileRequest,
    principal: Principal = Depends(can_manage_profiles),
    system: AdminSystem = Depends(get_admin_system)
):
    profile = system.access_manager.update_profile(
        profile_id, name=request.name, permissions=request.permissions, active=request.active
    )
    return {"success": True, "perfil": profile.to_dict()}


@router.delete("/{profile_id}")
def delete_profile(
    profile_id: str,
    principal: Principal = Depends(can_manage_profiles),
    system: AdminSystem = Depends(get_admin_system)
):
    system.access_manager.delete_profile(profile_id)
    return {"success": True}
