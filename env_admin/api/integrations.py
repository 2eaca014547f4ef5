"""
Integration catalog and credential endpoints
"""

from fastapi import APIRouter, Depends

from .auth import AdminSystem, Principal, get_admin_system, require_admin, require_permission
from .schemas import VerifyCredentialsRequest
from ..access import Permission


router = APIRouter()


@router.get("")
def list_integrations(
    principal: Principal = Depends(require_permission(Permission.VIEW_ENVIRONMENTS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Integrations currently offered to environments"""
    return {"success": True, "bancos": system.environment_store.list_integrations()}


@router.post("/refresh")
def refresh_integrations(
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """Rebuild the offered integrations from the template tree"""
    return {"success": True, "bancos": system.lifecycle.refresh_available_integrations()}


@router.get("/{integration_id}/credentials")
def credentials_across_environments(
    integration_id: str,
    principal: Principal = Depends(require_admin),
    system: AdminSystem = Depends(get_admin_system)
):
    """One integration's credentials in every environment that permits it"""
    return {
        "success": True,
        "bancoId": integration_id,
        "credenciais": system.lifecycle.get_credentials_all_environments(integration_id)
    }


@router.post("/{integration_id}/verify")
async def verify_credentials(
    integration_id: str,
    request: VerifyCredentialsRequest,
    principal: Principal = Depends(require_permission(Permission.TEST_INTEGRATION_APIS)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Check credentials against the integration without saving them"""
    result = await system.lifecycle.verify_credentials(
        integration_id, request.login, request.password, environment_id=request.environment_id
    )
    return result.to_dict()
