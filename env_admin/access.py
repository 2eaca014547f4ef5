"""
Access Control Module

Access profiles (named bundles of capability flags), per-environment logins
and the authentication flows for administrators and logins.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .passwords import make_password, needs_rehash, verify_password
from .storage import DocumentStore, utc_now_iso

logger = logging.getLogger("env_admin.access")

_UNSET = object()


class Permission(Enum):
    """Capability flags of an access profile"""
    # Integrations
    TEST_INTEGRATION_APIS = "bancos_testarAPIs"
    MANAGE_CREDENTIALS = "bancos_gerenciarCredenciais"
    
    # Environments
    VIEW_ENVIRONMENTS = "ambientes_visualizar"
    SYNC_ENVIRONMENTS = "ambientes_sincronizar"
    RESTART_ENVIRONMENTS = "ambientes_reiniciar"
    
    # Environment management
    MANAGE_ENVIRONMENTS = "gerenciarAmbientes"
    SET_ENVIRONMENT_INTEGRATIONS = "gerenciarAmbientes_definirBancos"
    RENAME_ENVIRONMENTS = "gerenciarAmbientes_nomearAmbiente"
    
    # Administration
    CREATE_PROFILES = "criarPerfis"
    
    # Lookups
    CLT_SINGLE = "clt_consulta"
    CLT_BATCH = "clt_lote"


def normalize_permissions(flags: Optional[Dict[str, Any]],
                          base: Optional[Dict[str, bool]] = None) -> Dict[str, bool]:
    """Merge ``flags`` over ``base`` (all False when omitted), rejecting unknown names"""
    known = {p.value for p in Permission}
    unknown = sorted(set(flags or {}) - known)
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(unknown)}", code="UNKNOWN_PERMISSION")
    result = {p.value: False for p in Permission}
    if base:
        result.update({k: bool(v) for k, v in base.items() if k in known})
    result.update({k: bool(v) for k, v in (flags or {}).items()})
    return result


@dataclass
class Profile:
    """Named bundle of capability flags"""
    id: str
    name: str
    permissions: Dict[str, bool] = field(default_factory=dict)
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    
    def has_permission(self, permission: Permission) -> bool:
        return self.active and bool(self.permissions.get(permission.value))
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nome": self.name,
            "permissoes": dict(self.permissions),
            "ativo": self.active,
            "criadoEm": self.created_at,
            "atualizadoEm": self.updated_at
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        return cls(
            id=data["id"],
            name=data.get("nome", ""),
            permissions=normalize_permissions(None, data.get("permissoes") or {}),
            active=bool(data.get("ativo", True)),
            created_at=data.get("criadoEm"),
            updated_at=data.get("atualizadoEm")
        )


@dataclass
class Login:
    """Named credential bound to one environment and optionally one profile"""
    id: str
    username: str
    environment_id: str
    profile_id: Optional[str] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "passwordHash": self.password_hash,
            "passwordSalt": self.password_salt,
            "ambienteId": self.environment_id,
            "perfilId": self.profile_id,
            "ativo": self.active,
            "criadoEm": self.created_at,
            "atualizadoEm": self.updated_at
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Login':
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            environment_id=data.get("ambienteId", ""),
            profile_id=data.get("perfilId") or None,
            password_hash=data.get("passwordHash"),
            password_salt=data.get("passwordSalt"),
            active=bool(data.get("ativo", True)),
            created_at=data.get("criadoEm"),
            updated_at=data.get("atualizadoEm")
        )
    
    def to_public_dict(self) -> Dict[str, Any]:
        data = self.to_dict()
        del data["passwordHash"]
        del data["passwordSalt"]
        return data


@dataclass
class LoginSession:
    """A successful login authentication"""
    login: Login
    environment: Dict[str, Any]
    profile: Optional[Profile] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "login": self.login.to_public_dict(),
            "perfil": self.profile.to_dict() if self.profile else None,
            "ambiente": {
                "id": self.environment.get("id"),
                "nome": self.environment.get("nome"),
                "porta": self.environment.get("porta"),
                "bancosPermitidos": self.environment.get("bancosPermitidos") or []
            }
        }


def _find(records: List[Dict[str, Any]], record_id: Optional[str]) -> Optional[Dict[str, Any]]:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def _normalize_username(username: Optional[str]) -> str:
    username = (username or "").strip()
    if not username:
        raise ValidationError("Username cannot be empty")
    return username


class AccessManager:
    """Profiles, logins and authentication over the shared document"""
    
    def __init__(self, document_store: DocumentStore):
        self.document_store = document_store
    
    # Administrators
    
    def authenticate_admin(self, username: str, password: str) -> Dict[str, Any]:
        """Authenticate an administrator; returns id, username and role"""
        users = self.document_store.get().data["admin"]["usuarios"]
        user = next((u for u in users if u.get("username") == username), None)
        if user is None:
            raise AuthenticationError("User not found", code=AuthenticationError.USER_NOT_FOUND)
        if not verify_password(password, user.get("passwordHash"), user.get("passwordSalt")):
            raise AuthenticationError("Incorrect password", code=AuthenticationError.INVALID_PASSWORD)
        if needs_rehash(user.get("passwordSalt")):
            password_hash, salt = make_password(password)
            
            def upgrade(data):
                for record in data["admin"]["usuarios"]:
                    if record.get("id") == user["id"]:
                        record["passwordHash"] = password_hash
                        record["passwordSalt"] = salt
            
            self.document_store.update(upgrade)
        return {"id": user["id"], "username": user["username"], "role": user.get("role", "admin")}
    
    # Profiles
    
    def list_profiles(self) -> List[Profile]:
        return [Profile.from_dict(p) for p in self.document_store.get().data["perfis"]]
    
    def get_profile(self, profile_id: str) -> Optional[Profile]:
        record = _find(self.document_store.get().data["perfis"], profile_id)
        return Profile.from_dict(record) if record else None
    
    def create_profile(self, name: str, permissions: Optional[Dict[str, Any]] = None) -> Profile:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Profile name is required")
        flags = normalize_permissions(permissions)
        
        def transform(data):
            if any(p.get("nome") == name for p in data["perfis"]):
                raise ConflictError(f"Profile \"{name}\" already exists")
            now = utc_now_iso()
            profile = Profile(
                id=f"perfil-{uuid.uuid4().hex[:12]}",
                name=name,
                permissions=flags,
                created_at=now,
                updated_at=now
            )
            data["perfis"].append(profile.to_dict())
            return profile
        
        profile = self.document_store.update(transform)
        logger.info(f"Profile {profile.id} created ({name})")
        return profile
    
    def update_profile(self, profile_id: str, name: Optional[str] = None,
                       permissions: Optional[Dict[str, Any]] = None,
                       active: Optional[bool] = None) -> Profile:
        """Rename, merge permission flags or toggle the active flag"""
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Profile name cannot be empty")
        if permissions is not None:
            normalize_permissions(permissions)
        
        def transform(data):
            record = _find(data["perfis"], profile_id)
            if record is None:
                raise NotFoundError(f"Profile not found: {profile_id}")
            if name is not None:
                if any(p.get("nome") == name and p.get("id") != profile_id for p in data["perfis"]):
                    raise ConflictError(f"Profile \"{name}\" already exists")
                record["nome"] = name
            if permissions is not None:
                record["permissoes"] = normalize_permissions(permissions, record.get("permissoes"))
            if active is not None:
                record["ativo"] = bool(active)
            record["atualizadoEm"] = utc_now_iso()
            return Profile.from_dict(record)
        
        return self.document_store.update(transform)
    
    def delete_profile(self, profile_id: str) -> None:
        def transform(data):
            record = _find(data["perfis"], profile_id)
            if record is None:
                raise NotFoundError(f"Profile not found: {profile_id}")
            data["perfis"].remove(record)
        
        self.document_store.update(transform)
        logger.info(f"Profile {profile_id} deleted")
    
    # Logins
    
    def list_logins(self) -> List[Login]:
        return [Login.from_dict(l) for l in self.document_store.get().data["logins"]]
    
    def get_login(self, login_id: str) -> Optional[Login]:
        record = _find(self.document_store.get().data["logins"], login_id)
        return Login.from_dict(record) if record else None
    
    def create_login(self, username: str, password: str, environment_id: str,
                     profile_id: Optional[str] = None) -> Login:
        """Create a login; usernames are unique case-insensitively"""
        username = _normalize_username(username)
        if not password:
            raise ValidationError("Password is required")
        profile_id = (profile_id or "").strip() or None
        password_hash, salt = make_password(password)
        
        def transform(data):
            self._check_username(data, username)
            if _find(data["ambientes"], environment_id) is None:
                raise NotFoundError(f"Environment not found: {environment_id}", code="AMBIENTE_NOT_FOUND")
            if profile_id and _find(data["perfis"], profile_id) is None:
                raise NotFoundError(f"Profile not found: {profile_id}")
            now = utc_now_iso()
            login = Login(
                id=f"login-{uuid.uuid4().hex[:12]}",
                username=username,
                environment_id=environment_id,
                profile_id=profile_id,
                password_hash=password_hash,
                password_salt=salt,
                created_at=now,
                updated_at=now
            )
            data["logins"].append(login.to_dict())
            return login
        
        login = self.document_store.update(transform)
        logger.info(f"Login {login.id} created for environment {environment_id}")
        return login
    
    def update_login(self, login_id: str, username: Optional[str] = None,
                     password: Optional[str] = None, environment_id: Optional[str] = None,
                     profile_id: Any = _UNSET, active: Optional[bool] = None) -> Login:
        """Update fields of a login; ``profile_id=None`` detaches the profile"""
        if username is not None:
            username = _normalize_username(username)
        secret = make_password(password) if password else None
        
        def transform(data):
            record = _find(data["logins"], login_id)
            if record is None:
                raise NotFoundError(f"Login not found: {login_id}")
            if username is not None:
                self._check_username(data, username, exclude_id=login_id)
                record["username"] = username
            if secret is not None:
                record["passwordHash"], record["passwordSalt"] = secret
            if environment_id is not None:
                if _find(data["ambientes"], environment_id) is None:
                    raise NotFoundError(f"Environment not found: {environment_id}", code="AMBIENTE_NOT_FOUND")
                record["ambienteId"] = environment_id
            if profile_id is not _UNSET:
                if profile_id and _find(data["perfis"], profile_id) is None:
                    raise NotFoundError(f"Profile not found: {profile_id}")
                record["perfilId"] = profile_id or None
            if active is not None:
                record["ativo"] = bool(active)
            record["atualizadoEm"] = utc_now_iso()
            return Login.from_dict(record)
        
        return self.document_store.update(transform)
    
    def delete_login(self, login_id: str) -> None:
        def transform(data):
            record = _find(data["logins"], login_id)
            if record is None:
                raise NotFoundError(f"Login not found: {login_id}")
            data["logins"].remove(record)
        
        self.document_store.update(transform)
        logger.info(f"Login {login_id} deleted")
    
    @staticmethod
    def _check_username(data: Dict[str, Any], username: str, exclude_id: Optional[str] = None):
        lowered = username.lower()
        for record in data["logins"]:
            if record.get("id") != exclude_id and (record.get("username") or "").lower() == lowered:
                raise ConflictError(f"Login \"{username}\" already exists", code="USERNAME_IN_USE")
    
    # Authentication
    
    def authenticate_login(self, username: str, password: str) -> LoginSession:
        """
        Authenticate a login.
        
        Checks run in a fixed order so each failure has its own code: unknown
        username, inactive login, wrong password, inactive profile, missing
        environment, inactive environment.
        """
        data = self.document_store.get().data
        lowered = (username or "").strip().lower()
        record = next(
            (l for l in data["logins"] if l.get("username") and l["username"].lower() == lowered),
            None
        )
        if record is None:
            raise AuthenticationError("User not found", code=AuthenticationError.USER_NOT_FOUND)
        login = Login.from_dict(record)
        if not login.active:
            raise AuthenticationError("User is inactive", code=AuthenticationError.USER_INACTIVE)
        if not verify_password(password, login.password_hash, login.password_salt):
            raise AuthenticationError("Incorrect password", code=AuthenticationError.INVALID_PASSWORD)
        
        profile = None
        if login.profile_id:
            profile_record = _find(data["perfis"], login.profile_id)
            if profile_record is not None:
                profile = Profile.from_dict(profile_record)
                if not profile.active:
                    raise AuthenticationError("Associated profile is inactive",
                                              code=AuthenticationError.PROFILE_INACTIVE)
        
        environment = _find(data["ambientes"], login.environment_id)
        if environment is None:
            raise AuthenticationError("Associated environment not found",
                                      code=AuthenticationError.ENVIRONMENT_NOT_FOUND)
        if not environment.get("ativo", True):
            raise AuthenticationError("Associated environment is inactive",
                                      code=AuthenticationError.ENVIRONMENT_INACTIVE)
        
        if needs_rehash(login.password_salt):
            login = self.update_login(login.id, password=password)
            logger.info(f"Upgraded password hash for login {login.id}")
        return LoginSession(login=login, environment=environment, profile=profile)
    
    def test_login(self, login_id: str, password: str) -> LoginSession:
        """Run ``authenticate_login`` for an existing login by id"""
        login = self.get_login(login_id)
        if login is None:
            raise NotFoundError(f"Login not found: {login_id}")
        return self.authenticate_login(login.username, password)
