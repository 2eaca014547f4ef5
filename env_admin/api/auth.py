"""
Authentication and authorization dependencies
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..access import AccessManager, Permission
from ..batch import BatchProcessor, HttpLookupClient, InMemoryJobStore, LookupClient
from ..catalog import IntegrationCatalog, DEFAULT_CATALOG
from ..config import AdminConfig, get_config
from ..credentials import CredentialCodec
from ..detector import EnvironmentDetector
from ..exceptions import AuthenticationError, ForbiddenError
from ..lifecycle import EnvironmentLifecycleManager
from ..storage import DocumentStore, JSONFileDocumentStore
from ..store import Environment, EnvironmentStore
from ..sync import DirectorySynchronizer
from ..verification import CredentialVerifier, HttpCredentialVerifier

ADMIN = "admin"
LOGIN = "login"

_DEFAULT = object()


class AdminSystem:
    """Administration backend with all components wired together"""
    
    def __init__(self, config: Optional[AdminConfig] = None,
                 document_store: Optional[DocumentStore] = None,
                 catalog: IntegrationCatalog = DEFAULT_CATALOG,
                 verifier=_DEFAULT, lookup_client: Optional[LookupClient] = None):
        self.config = config or get_config()
        self.document_store = document_store or JSONFileDocumentStore(
            self.config.database_path,
            admin_username=self.config.admin_username,
            admin_password=self.config.admin_password
        )
        self.catalog = catalog
        self.codec = CredentialCodec(catalog)
        
        self.environment_store = EnvironmentStore(self.document_store)
        self.access_manager = AccessManager(self.document_store)
        self.synchronizer = DirectorySynchronizer(
            catalog, self.codec, config_file=self.config.integration_config_file
        )
        self.detector = EnvironmentDetector(
            self.config.base_path,
            catalog,
            prefix=self.config.directory_prefix,
            suffix=self.config.directory_suffix,
            reserved_port=self.config.admin_port,
            environment_file=self.config.environment_file
        )
        self.lifecycle = EnvironmentLifecycleManager(
            self.environment_store, self.synchronizer, self.detector,
            codec=self.codec,
            catalog=catalog,
            config=self.config,
            verifier=self._create_verifier() if verifier is _DEFAULT else verifier
        )
        self.batch_processor = BatchProcessor(
            lookup_client or HttpLookupClient(
                host=self.config.lookup_host,
                path_template=self.config.lookup_path,
                timeout=self.config.lookup_timeout
            ),
            InMemoryJobStore(),
            window=self.config.batch_concurrency
        )
    
    def _create_verifier(self) -> Optional[CredentialVerifier]:
        """Create the verification client when a service URL is configured"""
        if not self.config.verification_url:
            return None
        return HttpCredentialVerifier(self.config.verification_url,
                                      timeout=self.config.verification_timeout)


_system: Optional[AdminSystem] = None


def get_admin_system() -> AdminSystem:
    """Dependency returning the process-wide system, created on first use"""
    global _system
    if _system is None:
        _system = AdminSystem()
    return _system


@dataclass
class Principal:
    """Authenticated caller: an administrator or a login bound to one environment"""
    kind: str
    subject: str
    username: str
    environment_id: Optional[str] = None
    profile_id: Optional[str] = None
    permissions: Dict[str, bool] = field(default_factory=dict)
    
    @property
    def is_admin(self) -> bool:
        return self.kind == ADMIN
    
    def has_permission(self, permission: Permission) -> bool:
        return self.is_admin or bool(self.permissions.get(permission.value))


def issue_token(config: AdminConfig, kind: str, subject: str, username: str) -> str:
    """Sign a bearer token for an authenticated admin or login"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "kind": kind,
        "username": username,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours)
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def decode_token(system: AdminSystem, token: str) -> Principal:
    """Validate a bearer token and load the caller's current permissions"""
    config = system.config
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
    
    subject, kind = payload.get("sub"), payload.get("kind")
    if not subject or kind not in (ADMIN, LOGIN):
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
    if kind == ADMIN:
        return Principal(kind=ADMIN, subject=subject, username=payload.get("username", ""))
    
    login = system.access_manager.get_login(subject)
    if login is None:
        raise AuthenticationError("Login no longer exists", code=AuthenticationError.USER_NOT_FOUND)
    if not login.active:
        raise AuthenticationError("User is inactive", code=AuthenticationError.USER_INACTIVE)
    permissions = {}
    if login.profile_id:
        profile = system.access_manager.get_profile(login.profile_id)
        if profile is not None:
            if not profile.active:
                raise AuthenticationError("Associated profile is inactive",
                                          code=AuthenticationError.PROFILE_INACTIVE)
            permissions = profile.permissions
    environment = system.environment_store.get_environment(login.environment_id)
    if environment is None:
        raise AuthenticationError("Associated environment not found",
                                  code=AuthenticationError.ENVIRONMENT_NOT_FOUND)
    if not environment.active:
        raise AuthenticationError("Associated environment is inactive",
                                  code=AuthenticationError.ENVIRONMENT_INACTIVE)
    return Principal(
        kind=LOGIN,
        subject=login.id,
        username=login.username,
        environment_id=login.environment_id,
        profile_id=login.profile_id,
        permissions=permissions
    )


# JWT Security
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: AdminSystem = Depends(get_admin_system)
) -> Principal:
    """Dependency that validates the bearer token and returns the caller"""
    if not system.config.auth_enabled:
        return Principal(kind=ADMIN, subject="test_user", username="test_user")
    if not credentials:
        raise AuthenticationError("Not authenticated", code="NOT_AUTHENTICATED")
    return decode_token(system, credentials.credentials)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenError("Administrator access required", code="ADMIN_REQUIRED")
    return principal


def require_permission(permission: Permission):
    """Dependency factory for profile permission checks; admins pass every check"""
    def check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_permission(permission):
            raise ForbiddenError(f"Missing permission: {permission.value}", code="INSUFFICIENT_PERMISSIONS")
        return principal
    return check


def get_current_environment(
    x_environment_id: Optional[str] = Header(None),
    x_username: Optional[str] = Header(None),
    x_password: Optional[str] = Header(None),
    system: AdminSystem = Depends(get_admin_system)
) -> Environment:
    """Environment owner authenticated through X-Environment-Id/X-Username/X-Password"""
    if not x_environment_id or not x_username or not x_password:
        raise AuthenticationError("Environment credentials required", code="MISSING_CREDENTIALS")
    return system.environment_store.authenticate_environment(x_environment_id, x_username, x_password)
