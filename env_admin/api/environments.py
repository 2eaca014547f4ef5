"""
Environment management endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import AdminSystem, Principal, get_admin_system, require_admin, require_permission
from .schemas import (
    CreateEnvironmentRequest,
    SetIntegrationsRequest,
    UpdateCredentialsRequest,
    UpdateEnvironmentRequest
)
from ..access import Permission
from ..exceptions import ForbiddenError


router = APIRouter()


def ensure_environment_access(principal: Principal, environment_id: str) -> None:
    """Logins may only act on the environment they belong to"""
    if not principal.is_admin and principal.environment_id != environment_id:
        raise ForbiddenError("Access to this environment is not allowed", code="ENVIRONMENT_FORBIDDEN")


@router.get("/environments")
def list_environments(
    principal: Principal = Depends(require_permission(Permission.VIEW_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """List environments visible to the caller"""
    environments = system.environment_store.list_environments()
    if not principal.is_admin:
        environments = [e for e in environments if e.id == principal.environment_id]
    return {"success": True, "ambientes": [e.to_public_dict() for e in environments]}


@router.get("/environments/{environment_id}")
def get_environment(
    environment_id: str,
    principal: Principal = Depends(require_permission(Permission.VIEW_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    ensure_environment_access(principal, environment_id)
    environment = system.environment_store.require_environment(environment_id)
    return {"success": True, "ambiente": environment.to_public_dict()}


@router.post("/environments", status_code=status.HTTP_201_CREATED)
def create_environment(
    request: CreateEnvironmentRequest,
    principal: Principal = Depends(require_permission(Permission.MANAGE_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Register an environment and materialize its directory tree"""
    result = system.lifecycle.provision(
        name=request.name,
        port=request.port,
        username=request.username,
        password=request.password,
        integrations=request.integrations,
        pipeline_ref=request.pipeline_ref,
        user_id=principal.subject
    )
    return result.to_dict()


@router.put("/environments/{environment_id}")
def update_environment(
    environment_id: str,
    request: UpdateEnvironmentRequest,
    principal: Principal = Depends(require_permission(Permission.MANAGE_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Rename, assign a pipeline reference or toggle an environment"""
    ensure_environment_access(principal, environment_id)
    changes = {}
    if request.name is not None:
        if not principal.has_permission(Permission.RENAME_ENVIRONMENTS):
            raise ForbiddenError(f"Missing permission: {Permission.RENAME_ENVIRONMENTS.value}",
                                 code="INSUFFICIENT_PERMISSIONS")
        changes["name"] = request.name
    if "pipeline_ref" in request.model_fields_set:
        changes["pipeline_ref"] = request.pipeline_ref
    if request.active is not None:
        changes["active"] = request.active
    environment = system.environment_store.update_environment(environment_id, **changes)
    return {"success": True, "ambiente": environment.to_public_dict()}


@router.put("/environments/{environment_id}/integrations")
def set_integrations(
    environment_id: str,
    request: SetIntegrationsRequest,
    principal: Principal = Depends(require_permission(Permission.SET_ENVIRONMENT_INTEGRATIONS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Replace the permitted integrations and copy them into the environment"""
    ensure_environment_access(principal, environment_id)
    result = system.lifecycle.set_permitted_integrations(
        environment_id, request.integrations, user_id=principal.subject
    )
    body = result.to_dict()
    body["bancosPermitidos"] = result.environment.permitted_integrations
    return body


@router.post("/environments/{environment_id}/sync")
def sync_environment(
    environment_id: str,
    principal: Principal = Depends(require_permission(Permission.SYNC_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    ensure_environment_access(principal, environment_id)
    return system.lifecycle.sync_environment(environment_id, user_id=principal.subject).to_dict()


@router.post("/environments/{environment_id}/integrations/{integration_id}/sync")
def sync_integration(
    environment_id: str,
    integration_id: str,
    principal: Principal = Depends(require_permission(Permission.SYNC_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    ensure_environment_access(principal, environment_id)
    outcome = system.lifecycle.sync_integration(environment_id, integration_id, user_id=principal.subject)
    return outcome.to_dict()


@router.post("/sync-all")
def sync_all(
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """Synchronize every active environment from the template tree"""
    results = system.lifecycle.sync_all_active(user_id=principal.subject)
    return {"success": True, "resultados": [r.to_dict() for r in results]}


@router.post("/reconcile")
def reconcile(
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """Register environments found on disk and deactivate missing ones"""
    return system.lifecycle.reconcile(user_id=principal.subject).to_dict()


@router.delete("/environments/{environment_id}")
def delete_environment(
    environment_id: str,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    return system.lifecycle.delete(environment_id, user_id=principal.subject).to_dict()


@router.get("/environments/{environment_id}/integrations/{integration_id}/credentials")
def get_credentials(
    environment_id: str,
    integration_id: str,
    principal: Principal = Depends(require_permission(Permission.MANAGE_CREDENTIALS)),
    system: AdminSystem = Depends(get_admin_system)
):
    ensure_environment_access(principal, environment_id)
    credentials = system.lifecycle.get_credentials(environment_id, integration_id)
    return {"success": True, "credenciais": credentials}


@router.put("/environments/{environment_id}/integrations/{integration_id}/credentials")
async def update_credentials(
    environment_id: str,
    integration_id: str,
    request: UpdateCredentialsRequest,
    principal: Principal = Depends(require_permission(Permission.MANAGE_CREDENTIALS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Write an integration's credentials, verifying them first unless disabled"""
    ensure_environment_access(principal, environment_id)
    result = await system.lifecycle.update_credentials(
        environment_id, integration_id,
        login=request.login,
        password=request.password,
        verify=request.verify,
        user_id=principal.subject
    )
    return result.to_dict()
