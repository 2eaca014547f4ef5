"""
Sign-in endpoints for administrators and logins
"""

import logging

from fastapi import APIRouter, Depends

from .auth import (
    ADMIN, LOGIN, AdminSystem, Principal, get_admin_system, get_current_principal, issue_token
)
from .schemas import LoginRequest
from ..exceptions import AuthenticationError
from ..logging_config import log_action

logger = logging.getLogger("env_admin.api")

router = APIRouter()


@router.post("/login")
async def login(
    request: LoginRequest,
    system: AdminSystem = Depends(get_admin_system)
):
    """Authenticate an administrator, falling back to environment logins"""
    try:
        user = system.access_manager.authenticate_admin(request.username, request.password)
    except AuthenticationError as admin_error:
        if admin_error.code != AuthenticationError.USER_NOT_FOUND:
            log_action(logger, "warning", "Admin authentication failed",
                       action="login_failed", resource="auth",
                       extra={"username": request.username, "errorCode": admin_error.code})
            raise
    else:
        log_action(logger, "info", "Admin authenticated", user_id=user["id"],
                   action="login", resource="auth")
        return {
            "success": True,
            "tipo": ADMIN,
            "usuario": user,
            "token": issue_token(system.config, ADMIN, user["id"], user["username"])
        }
    
    try:
        session = system.access_manager.authenticate_login(request.username, request.password)
    except AuthenticationError as e:
        log_action(logger, "warning", f"Login authentication failed: {e.message}",
                   action="login_failed", resource="auth",
                   extra={"username": request.username, "errorCode": e.code})
        raise
    
    log_action(logger, "info", "Login authenticated", user_id=session.login.id,
               action="login", resource="auth")
    return {
        **session.to_dict(),
        "tipo": LOGIN,
        "token": issue_token(system.config, LOGIN, session.login.id, session.login.username)
    }


@router.post("/validate-token")
async def validate_token(principal: Principal = Depends(get_current_principal)):
    """Return the caller behind a bearer token"""
    return {
        "success": True,
        "tipo": principal.kind,
        "usuario": {
            "id": principal.subject,
            "username": principal.username,
            "ambienteId": principal.environment_id,
            "perfilId": principal.profile_id
        },
        "permissoes": principal.permissions
    }
