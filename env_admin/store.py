"""
Environment Store Module

Environment records inside the shared JSON document: creation with port and
name uniqueness, permission and metadata updates, owner authentication and the
persistence half of filesystem reconciliation.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .detector import DetectedEnvironment
from .exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .passwords import make_password, needs_rehash, verify_password
from .storage import DocumentStore, utc_now_iso

logger = logging.getLogger("env_admin.store")

_UNSET = object()


@dataclass
class Environment:
    """A provisioned, ported, filesystem-backed deployment unit"""
    id: str
    name: str
    port: int
    directory: str
    username: str
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    permitted_integrations: List[str] = field(default_factory=list)
    pipeline_ref: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        """Persisted representation"""
        return {
            "id": self.id,
            "nome": self.name,
            "porta": self.port,
            "path": self.directory,
            "username": self.username,
            "passwordHash": self.password_hash,
            "passwordSalt": self.password_salt,
            "bancosPermitidos": list(self.permitted_integrations),
            "pipelineKentro": self.pipeline_ref,
            "criadoEm": self.created_at,
            "atualizadoEm": self.updated_at,
            "ativo": self.active
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Environment':
        return cls(
            id=data["id"],
            name=data.get("nome", ""),
            port=int(data["porta"]),
            directory=data.get("path", ""),
            username=data.get("username", ""),
            password_hash=data.get("passwordHash"),
            password_salt=data.get("passwordSalt"),
            permitted_integrations=list(data.get("bancosPermitidos") or []),
            pipeline_ref=data.get("pipelineKentro"),
            active=bool(data.get("ativo", True)),
            created_at=data.get("criadoEm"),
            updated_at=data.get("atualizadoEm")
        )
    
    def to_public_dict(self) -> Dict[str, Any]:
        """Sanitized view without owner secrets"""
        return {
            "id": self.id,
            "nome": self.name,
            "porta": self.port,
            "path": self.directory,
            "bancosPermitidos": list(self.permitted_integrations),
            "pipelineKentro": self.pipeline_ref,
            "ativo": self.active,
            "criadoEm": self.created_at,
            "atualizadoEm": self.updated_at
        }


@dataclass
class ReconciliationEntry:
    """What reconciliation did with one environment"""
    environment_id: str
    name: str
    port: int
    status: str
    generated_credentials: Optional[Dict[str, str]] = None
    
    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.environment_id,
            "nome": self.name,
            "porta": self.port,
            "status": self.status
        }
        if self.generated_credentials:
            result["credenciais"] = self.generated_credentials
        return result


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass"""
    created: List[ReconciliationEntry] = field(default_factory=list)
    updated: List[ReconciliationEntry] = field(default_factory=list)
    deactivated: List[ReconciliationEntry] = field(default_factory=list)
    detected: int = 0
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "detectados": self.detected,
            "criados": [e.to_dict() for e in self.created],
            "atualizados": [e.to_dict() for e in self.updated],
            "desativados": [e.to_dict() for e in self.deactivated]
        }


def _find(records: List[Dict[str, Any]], record_id: str) -> Optional[Dict[str, Any]]:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def _require_environment(data: Dict[str, Any], environment_id: str) -> Dict[str, Any]:
    record = _find(data["ambientes"], environment_id)
    if record is None:
        raise NotFoundError(f"Environment not found: {environment_id}", code="AMBIENTE_NOT_FOUND")
    return record


def new_environment_id() -> str:
    return f"ambiente-{uuid.uuid4().hex[:12]}"


class EnvironmentStore:
    """
    Environment records over a DocumentStore.
    
    Every mutation is one ``DocumentStore.update`` call, so uniqueness checks and
    the write happen under the document store's lock. Records are never
    deleted by reconciliation, only by ``delete_environment``.
    """
    
    def __init__(self, document_store: DocumentStore):
        self.document_store = document_store
    
    def create_environment(self, name: str, port: int, directory: str, username: str,
                           password: str, integrations: Optional[Iterable[str]] = None,
                           pipeline_ref: Optional[str] = None) -> Environment:
        """Insert a new active environment; ConflictError on a used port or name"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Environment name is required")
        if not username or not password:
            raise ValidationError("Owner username and password are required")
        password_hash, salt = make_password(password)
        
        def transform(data):
            for existing in data["ambientes"]:
                if int(existing.get("porta", -1)) == port:
                    raise ConflictError(
                        f"Port {port} is already used by environment \"{existing.get('nome')}\"",
                        code="PORT_IN_USE"
                    )
                if existing.get("nome") == name:
                    raise ConflictError(f"Environment \"{name}\" already exists", code="NAME_IN_USE")
            now = utc_now_iso()
            environment = Environment(
                id=new_environment_id(),
                name=name,
                port=port,
                directory=directory,
                username=username,
                password_hash=password_hash,
                password_salt=salt,
                permitted_integrations=list(dict.fromkeys(integrations or [])),
                pipeline_ref=pipeline_ref or None,
                active=True,
                created_at=now,
                updated_at=now
            )
            data["ambientes"].append(environment.to_dict())
            return environment
        
        environment = self.document_store.update(transform)
        logger.info(f"Environment {environment.id} created ({name}, port {port})")
        return environment
    
    def list_environments(self, active_only: bool = False) -> List[Environment]:
        records = self.document_store.get().data["ambientes"]
        environments = [Environment.from_dict(r) for r in records]
        if active_only:
            environments = [e for e in environments if e.active]
        return environments
    
    def get_environment(self, environment_id: str) -> Optional[Environment]:
        """Full record including the owner secret hash"""
        record = _find(self.document_store.get().data["ambientes"], environment_id)
        return Environment.from_dict(record) if record else None
    
    def require_environment(self, environment_id: str) -> Environment:
        environment = self.get_environment(environment_id)
        if environment is None:
            raise NotFoundError(f"Environment not found: {environment_id}", code="AMBIENTE_NOT_FOUND")
        return environment
    
    def get_environment_by_port(self, port: int) -> Optional[Environment]:
        for environment in self.list_environments():
            if environment.port == port:
                return environment
        return None
    
    def update_permitted_integrations(self, environment_id: str,
                                      integrations: Iterable[str]) -> Environment:
        """Replace the permitted set; members are not checked against the catalog here"""
        integrations = list(dict.fromkeys(integrations))
        
        def transform(data):
            record = _require_environment(data, environment_id)
            record["bancosPermitidos"] = integrations
            record["atualizadoEm"] = utc_now_iso()
            return Environment.from_dict(record)
        
        return self.document_store.update(transform)
    
    def update_environment(self, environment_id: str, name: Optional[str] = None,
                           pipeline_ref: Any = _UNSET,
                           active: Optional[bool] = None) -> Environment:
        """Rename, assign a pipeline reference or toggle the active flag"""
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Environment name cannot be empty")
        
        def transform(data):
            record = _require_environment(data, environment_id)
            if name is not None:
                for other in data["ambientes"]:
                    if other.get("nome") == name and other.get("id") != environment_id:
                        raise ConflictError(f"Environment \"{name}\" already exists", code="NAME_IN_USE")
                record["nome"] = name
            if pipeline_ref is not _UNSET:
                record["pipelineKentro"] = pipeline_ref or None
            if active is not None:
                record["ativo"] = bool(active)
            record["atualizadoEm"] = utc_now_iso()
            return Environment.from_dict(record)
        
        return self.document_store.update(transform)
    
    def delete_environment(self, environment_id: str) -> Environment:
        """Remove the record and return it"""
        def transform(data):
            record = _require_environment(data, environment_id)
            data["ambientes"].remove(record)
            return Environment.from_dict(record)
        
        environment = self.document_store.update(transform)
        logger.info(f"Environment {environment_id} removed from the database")
        return environment
    
    def authenticate_environment(self, environment_id: str, username: str,
                                 password: str) -> Environment:
        """Check owner credentials; legacy hashes are upgraded on success"""
        environment = self.get_environment(environment_id)
        if environment is None:
            raise AuthenticationError("Environment not found",
                                      code=AuthenticationError.ENVIRONMENT_NOT_FOUND)
        if environment.username != username:
            raise AuthenticationError("Incorrect username", code=AuthenticationError.USER_NOT_FOUND)
        if not verify_password(password, environment.password_hash, environment.password_salt):
            raise AuthenticationError("Incorrect password", code=AuthenticationError.INVALID_PASSWORD)
        if needs_rehash(environment.password_salt):
            self._rehash(environment_id, password)
        return environment
    
    def _rehash(self, environment_id: str, password: str) -> None:
        password_hash, salt = make_password(password)
        
        def transform(data):
            record = _require_environment(data, environment_id)
            record["passwordHash"] = password_hash
            record["passwordSalt"] = salt
        
        self.document_store.update(transform)
        logger.info(f"Upgraded password hash for environment {environment_id}")
    
    def apply_reconciliation(self, detected: List[DetectedEnvironment],
                             protected_ports: Iterable[int],
                             credential_factory: Callable[[int], Tuple[str, str]]
                             ) -> ReconciliationReport:
        """
        Fold a detection pass into the document.
        
        Known ports get their directory refreshed and, only while their permitted
        set is empty, the detected integrations; inactive ones are reactivated.
        Unknown ports are registered with owner credentials from
        ``credential_factory(port)``. Active records
        whose port was not detected are deactivated unless the port is protected.
        """
        protected: Set[int] = set(protected_ports)
        # Hash outside the lock; scrypt is slow
        prepared = {}
        known_ports = {e.port for e in self.list_environments()}
        for item in detected:
            if item.port not in known_ports:
                username, password = credential_factory(item.port)
                prepared[item.port] = (username, password, make_password(password))
        
        def transform(data):
            report = ReconciliationReport(detected=len(detected))
            now = utc_now_iso()
            by_port = {int(r.get("porta", -1)): r for r in data["ambientes"]}
            names = {r.get("nome") for r in data["ambientes"]}
            for item in detected:
                record = by_port.get(item.port)
                if record is not None:
                    record["path"] = item.directory
                    status = "atualizado"
                    if not record.get("ativo", True):
                        record["ativo"] = True
                        status = "reativado"
                    if not record.get("bancosPermitidos") and item.integrations:
                        record["bancosPermitidos"] = list(item.integrations)
                        status = "atualizado (bancos detectados)"
                    record["atualizadoEm"] = now
                    report.updated.append(ReconciliationEntry(
                        record["id"], record.get("nome", ""), item.port, status))
                    continue
                
                if item.port not in prepared:
                    # Registered by a concurrent writer between detection and this update
                    username, password = credential_factory(item.port)
                    prepared[item.port] = (username, password, make_password(password))
                username, password, (password_hash, salt) = prepared[item.port]
                name = item.name
                suffix = 2
                while name in names:
                    name = f"{item.name} ({suffix})"
                    suffix += 1
                environment = Environment(
                    id=new_environment_id(),
                    name=name,
                    port=item.port,
                    directory=item.directory,
                    username=username,
                    password_hash=password_hash,
                    password_salt=salt,
                    permitted_integrations=list(item.integrations),
                    active=True,
                    created_at=now,
                    updated_at=now
                )
                data["ambientes"].append(environment.to_dict())
                by_port[item.port] = data["ambientes"][-1]
                names.add(name)
                report.created.append(ReconciliationEntry(
                    environment.id, name, item.port, "criado",
                    generated_credentials={"username": username, "password": password}))
            
            detected_ports = {item.port for item in detected}
            for record in data["ambientes"]:
                port = int(record.get("porta", -1))
                if record.get("ativo") and port not in detected_ports and port not in protected:
                    record["ativo"] = False
                    record["atualizadoEm"] = now
                    report.deactivated.append(ReconciliationEntry(
                        record["id"], record.get("nome", ""), port,
                        "marcado como inativo (pasta não encontrada)"))
            
            data["ultimaSincronizacao"] = now
            return report
        
        return self.document_store.update(transform)
    
    def list_integrations(self) -> List[Dict[str, Any]]:
        """Active rows of the available-integrations collection"""
        return [b for b in self.document_store.get().data["bancosDisponiveis"] if b.get("ativo", True)]
    
    def set_available_integrations(self, entries: List[Dict[str, Any]]) -> None:
        entries = list(entries)
        
        def transform(data):
            data["bancosDisponiveis"] = entries
            data["ultimaSincronizacao"] = utc_now_iso()
        
        self.document_store.update(transform)
