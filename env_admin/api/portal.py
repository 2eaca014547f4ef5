"""
Environment self-service endpoints

Environment owners authenticate with the X-Environment-Id, X-Username and
X-Password headers and manage credentials of their permitted integrations.
"""

from fastapi import APIRouter, Depends

from .auth import AdminSystem, get_admin_system, get_current_environment
from .schemas import EnvironmentLoginRequest, UpdateCredentialsRequest
from ..store import Environment


router = APIRouter()


@router.post("/login")
def environment_login(
    request: EnvironmentLoginRequest,
    system: AdminSystem = Depends(get_admin_system)
):
    environment = system.environment_store.authenticate_environment(
        request.environment_id, request.username, request.password
    )
    return {"success": True, "ambiente": environment.to_public_dict()}


@router.get("/integrations")
def permitted_integrations(
    environment: Environment = Depends(get_current_environment),
    system: AdminSystem = Depends(get_admin_system)
):
    integrations = []
    for integration_id in environment.permitted_integrations:
        integration = system.catalog.get(integration_id)
        integrations.append({"id": integration_id, "nome": integration.name if integration else integration_id})
    return {"success": True, "bancos": integrations}


@router.get("/integrations/{integration_id}/credentials")
def get_own_credentials(
    integration_id: str,
    environment: Environment = Depends(get_current_environment),
    system: AdminSystem = Depends(get_admin_system)
):
    system.lifecycle.require_permitted(environment, integration_id)
    return {"success": True, "credenciais": system.lifecycle.get_credentials(environment.id, integration_id)}


@router.put("/integrations/{integration_id}/credentials")
async def update_own_credentials(
    integration_id: str,
    request: UpdateCredentialsRequest,
    environment: Environment = Depends(get_current_environment),
    system: AdminSystem = Depends(get_admin_system)
):
    result = await system.lifecycle.update_credentials(
        environment.id, integration_id,
        login=request.login,
        password=request.password,
        verify=request.verify,
        user_id=environment.username
    )
    return result.to_dict()
