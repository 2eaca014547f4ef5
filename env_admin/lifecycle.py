"""
Environment Lifecycle Manager

Orchestrates provisioning, reconciliation, synchronization, credential updates
and deletion of environments. Owns references to the store, the synchronizer
and the detector; none of those call back into this module.

Filesystem work is best effort: copy failures are collected per integration
and reported next to an overall success, and a failed directory removal after
delete is downgraded to a warning. Store write failures always propagate.
"""

import logging
import secrets
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .catalog import Integration, IntegrationCatalog, DEFAULT_CATALOG
from .config import AdminConfig, get_config
from .credentials import CredentialCodec, parse_env
from .detector import EnvironmentDetector
from .exceptions import (
    AdminError, FilesystemError, ForbiddenError, NotFoundError, ValidationError,
    VerificationFailedError
)
from .logging_config import log_action
from .store import Environment, EnvironmentStore, ReconciliationReport
from .sync import CopyReport, DirectorySynchronizer
from .verification import CredentialVerifier, VerificationResult

logger = logging.getLogger("env_admin.lifecycle")

INTEGRATION = "integration"
SHARED = "shared"


@dataclass
class SyncOutcome:
    """Result of copying one integration or shared directory"""
    target: str
    kind: str
    success: bool
    message: str = ""
    error: Optional[str] = None
    report: Optional[CopyReport] = None
    
    def to_dict(self) -> Dict[str, Any]:
        result = {"banco" if self.kind == INTEGRATION else "item": self.target, "success": self.success}
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = self.error
        if self.report:
            result["arquivosCopiados"] = self.report.files_copied
        return result


@dataclass
class EnvironmentSyncResult:
    """Per-target outcomes of synchronizing one environment"""
    environment: Environment
    outcomes: List[SyncOutcome] = field(default_factory=list)
    
    @property
    def failures(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if not o.success]
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "ambiente": self.environment.name,
            "ambienteId": self.environment.id,
            "porta": self.environment.port,
            "resultados": [o.to_dict() for o in self.outcomes]
        }


@dataclass
class ProvisionResult:
    """A registered environment plus the outcome of materializing its tree"""
    environment: Environment
    path: str
    outcomes: List[SyncOutcome] = field(default_factory=list)
    
    @property
    def materialized(self) -> bool:
        return all(o.success for o in self.outcomes)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "ambiente": self.environment.to_public_dict(),
            "estrutura": {
                "success": self.materialized,
                "path": self.path,
                "resultados": [o.to_dict() for o in self.outcomes]
            }
        }


@dataclass
class CredentialUpdateResult:
    environment_id: str
    integration_id: str
    verification: Optional[VerificationResult] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Credentials updated",
            "validacao": self.verification.to_dict() if self.verification else None
        }


@dataclass
class DeleteResult:
    environment: Environment
    directory_removed: bool
    warning: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": True,
            "message": "Environment and directory deleted" if self.directory_removed
            else "Environment deleted"
        }
        if self.warning:
            result["warning"] = self.warning
        return result


def _outcome_from_error(target: str, kind: str, error: Exception) -> SyncOutcome:
    message = error.message if isinstance(error, AdminError) else str(error)
    return SyncOutcome(target=target, kind=kind, success=False, error=message)


class EnvironmentLifecycleManager:
    """Creates, reconciles, synchronizes and deletes environments"""
    
    def __init__(self, store: EnvironmentStore, synchronizer: DirectorySynchronizer,
                 detector: EnvironmentDetector, codec: Optional[CredentialCodec] = None,
                 catalog: IntegrationCatalog = DEFAULT_CATALOG,
                 config: Optional[AdminConfig] = None,
                 verifier: Optional[CredentialVerifier] = None):
        self.store = store
        self.synchronizer = synchronizer
        self.detector = detector
        self.catalog = catalog
        self.codec = codec or CredentialCodec(catalog)
        self.config = config or get_config()
        self.verifier = verifier
    
    @property
    def base_path(self) -> Path:
        return Path(self.config.base_path)
    
    @property
    def template_path(self) -> Path:
        return self.base_path / self.config.template_directory
    
    def environment_path(self, environment: Environment) -> Path:
        return self.base_path / environment.directory
    
    def environment_file(self, environment: Environment) -> Path:
        return self.environment_path(environment) / self.config.environment_file
    
    def _read_environment_file(self, env_file: Path) -> str:
        try:
            return env_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Could not read credential file {env_file}: {e}")
            raise FilesystemError(f"Could not read credential file {env_file}: {e}",
                                  failures=[{"path": str(env_file), "reason": str(e)}],
                                  code="ENV_FILE_ERROR")
    
    def _write_environment_file(self, env_file: Path, content: str):
        try:
            env_file.parent.mkdir(parents=True, exist_ok=True)
            env_file.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not write credential file {env_file}: {e}")
            raise FilesystemError(f"Could not write credential file {env_file}: {e}",
                                  failures=[{"path": str(env_file), "reason": str(e)}],
                                  code="ENV_FILE_ERROR")
    
    def require_permitted(self, environment: Environment, integration_id: str) -> Integration:
        """Catalog entry of ``integration_id``; ForbiddenError unless the environment permits it"""
        integration = self.catalog.require(integration_id)
        if integration_id not in environment.permitted_integrations:
            raise ForbiddenError(
                f"Integration {integration_id} is not permitted for environment {environment.name}",
                code="INTEGRATION_NOT_PERMITTED"
            )
        return integration
    
    # Provisioning
    
    def provision(self, name: str, port: int, username: str, password: str,
                  integrations: Optional[Iterable[str]] = None,
                  pipeline_ref: Optional[str] = None,
                  user_id: Optional[str] = None) -> ProvisionResult:
        """
        Register an environment and materialize its directory tree.
        
        Validation and uniqueness failures leave everything untouched. Once the
        record is stored, materialization problems are reported in the result
        and do not undo the registration.
        """
        if not isinstance(port, int) or isinstance(port, bool):
            raise ValidationError("Port must be an integer")
        if not self.config.port_min <= port <= self.config.port_max:
            raise ValidationError(
                f"Port must be between {self.config.port_min} and {self.config.port_max}",
                code="INVALID_PORT"
            )
        if port in (self.config.admin_port, self.config.template_port):
            raise ValidationError(f"Port {port} is reserved", code="RESERVED_PORT")
        integrations = self.catalog.validate_ids(integrations or [])
        
        environment = self.store.create_environment(
            name=name,
            port=port,
            directory=self.config.directory_for_port(port),
            username=username,
            password=password,
            integrations=integrations,
            pipeline_ref=pipeline_ref
        )
        path = self.environment_path(environment)
        outcomes = self._materialize(environment)
        
        log_action(logger, "info", f"Environment {environment.name} provisioned on port {port}",
                   user_id=user_id, action="provision", resource=environment.id,
                   extra={"porta": port, "bancos": integrations,
                          "falhas": [o.target for o in outcomes if not o.success]})
        return ProvisionResult(environment=environment, path=str(path), outcomes=outcomes)
    
    def _materialize(self, environment: Environment) -> List[SyncOutcome]:
        path = self.environment_path(environment)
        outcomes = []
        try:
            path.mkdir(parents=True, exist_ok=True)
            env_file = self.environment_file(environment)
            if not env_file.exists():
                env_file.write_text(
                    f"# Configuração do Ambiente {environment.port}\nPORT={environment.port}\n\n",
                    encoding="utf-8"
                )
        except OSError as e:
            logger.error(f"Could not create base directory {path}: {e}")
            return [_outcome_from_error(str(path), SHARED, e)]
        
        # Existing subtrees are left alone; sync refreshes them explicitly
        for integration_id in environment.permitted_integrations:
            directory = self.catalog.require(integration_id).directory
            source, destination = self.template_path / directory, path / directory
            if not source.is_dir() or destination.exists():
                continue
            outcomes.append(self._copy(source, destination, integration_id, INTEGRATION, integration_id))
        for directory in self.config.shared_directories:
            source, destination = self.template_path / directory, path / directory
            if not source.is_dir() or destination.exists():
                continue
            outcomes.append(self._copy(source, destination, None, SHARED, directory))
        return outcomes
    
    def _copy(self, source: Path, destination: Path, integration_id: Optional[str],
              kind: str, target: str) -> SyncOutcome:
        try:
            report = self.synchronizer.copy(source, destination, integration_id)
        except (AdminError, OSError) as e:
            logger.warning(f"Copy of {target} into {destination.parent} failed: {e}")
            return _outcome_from_error(target, kind, e)
        return SyncOutcome(target=target, kind=kind, success=True,
                           message=f"{target} synchronized", report=report)
    
    def set_permitted_integrations(self, environment_id: str, integrations: Iterable[str],
                                   user_id: Optional[str] = None) -> EnvironmentSyncResult:
        """Validate and persist the permitted set, then copy every permitted integration"""
        integrations = self.catalog.validate_ids(integrations)
        environment = self.store.update_permitted_integrations(environment_id, integrations)
        log_action(logger, "info", f"Permitted integrations of {environment.name} set",
                   user_id=user_id, action="set_integrations", resource=environment_id,
                   extra={"bancos": integrations})
        
        result = EnvironmentSyncResult(environment=environment)
        for integration_id in integrations:
            try:
                result.outcomes.append(self.sync_integration(environment_id, integration_id))
            except AdminError as e:
                result.outcomes.append(_outcome_from_error(integration_id, INTEGRATION, e))
        return result
    
    # Reconciliation
    
    def default_credentials(self, port: int) -> Tuple[str, str]:
        """Owner credentials for an environment registered by reconciliation"""
        username = f"admin-{port}"
        if self.config.reconcile_random_passwords:
            return username, secrets.token_urlsafe(12)
        logger.warning(f"Registering environment on port {port} with the predictable default password")
        return username, f"admin{port}"
    
    def reconcile(self, user_id: Optional[str] = None) -> ReconciliationReport:
        """Fold the environments found on disk into the store"""
        detected = self.detector.detect()
        report = self.store.apply_reconciliation(
            detected,
            protected_ports={self.config.template_port},
            credential_factory=self.default_credentials
        )
        log_action(logger, "info", f"Reconciled {len(detected)} detected environment(s)",
                   user_id=user_id, action="reconcile", resource="ambientes",
                   extra={"criados": len(report.created), "atualizados": len(report.updated),
                          "desativados": len(report.deactivated)})
        return report
    
    # Synchronization
    
    def sync_integration(self, environment_id: str, integration_id: str,
                         user_id: Optional[str] = None) -> SyncOutcome:
        """Copy one permitted integration from the template tree; copy errors propagate"""
        environment = self.store.require_environment(environment_id)
        integration = self.require_permitted(environment, integration_id)
        source = self.template_path / integration.directory
        if not source.is_dir():
            raise NotFoundError(
                f"Integration {integration_id} (directory {integration.directory}) "
                f"not found in the template tree",
                code="SOURCE_NOT_FOUND"
            )
        report = self.synchronizer.copy(
            source, self.environment_path(environment) / integration.directory, integration_id
        )
        log_action(logger, "info", f"Integration {integration_id} synchronized into {environment.name}",
                   user_id=user_id, action="sync", resource=environment_id,
                   extra={"banco": integration_id, "arquivos": report.files_copied})
        return SyncOutcome(target=integration_id, kind=INTEGRATION, success=True,
                           message=f"Integration {integration_id} synchronized", report=report)
    
    def sync_environment(self, environment_id: str,
                         user_id: Optional[str] = None) -> EnvironmentSyncResult:
        """Sync every permitted integration plus the shared directories, collecting failures"""
        environment = self.store.require_environment(environment_id)
        result = EnvironmentSyncResult(environment=environment)
        for integration_id in environment.permitted_integrations:
            try:
                result.outcomes.append(self.sync_integration(environment_id, integration_id, user_id))
            except AdminError as e:
                logger.warning(f"Sync of {integration_id} into {environment.name} failed: {e.message}")
                result.outcomes.append(_outcome_from_error(integration_id, INTEGRATION, e))
        
        path = self.environment_path(environment)
        for directory in self.config.shared_directories:
            source = self.template_path / directory
            if source.is_dir():
                result.outcomes.append(self._copy(source, path / directory, None, SHARED, directory))
        return result
    
    def sync_all_active(self, user_id: Optional[str] = None) -> List[EnvironmentSyncResult]:
        return [
            self.sync_environment(environment.id, user_id)
            for environment in self.store.list_environments(active_only=True)
        ]
    
    # Credentials
    
    def get_credentials(self, environment_id: str, integration_id: str) -> Dict[str, str]:
        """Current login/password of an integration in an environment's credential file"""
        environment = self.store.require_environment(environment_id)
        self.catalog.require(integration_id)
        env_file = self.environment_file(environment)
        if not env_file.is_file():
            raise NotFoundError(f"Credential file not found for {environment.name}",
                                code="ENV_FILE_NOT_FOUND")
        return self.codec.read(self._read_environment_file(env_file), integration_id)
    
    def get_credentials_all_environments(self, integration_id: str) -> List[Dict[str, Any]]:
        """Credentials of one integration in every environment that permits it"""
        self.catalog.require(integration_id)
        rows = []
        for environment in self.store.list_environments():
            if integration_id not in environment.permitted_integrations:
                continue
            row = {
                "ambienteId": environment.id,
                "ambienteNome": environment.name,
                "ambientePorta": environment.port
            }
            try:
                row["credenciais"] = self.get_credentials(environment.id, integration_id)
            except (NotFoundError, FilesystemError) as e:
                row["credenciais"] = None
                row["erro"] = e.message
            rows.append(row)
        return rows
    
    def _environment_vars(self, environment: Environment) -> Dict[str, str]:
        env_file = self.environment_file(environment)
        if not env_file.is_file():
            return {}
        return parse_env(self._read_environment_file(env_file))
    
    async def _run_verifier(self, integration_id: str, login: str, password: str,
                            env_vars: Dict[str, str]) -> VerificationResult:
        try:
            return await self.verifier.verify(integration_id, login, password, env_vars)
        except Exception as e:
            logger.error(f"Credential verification for {integration_id} errored: {e}")
            return VerificationResult(
                success=False,
                message=f"Verification error: {e}",
                details={"reason": "verification_error"}
            )
    
    async def verify_credentials(self, integration_id: str, login: str, password: str,
                                 environment_id: Optional[str] = None) -> VerificationResult:
        """Run the external check without writing anything"""
        self.catalog.require(integration_id)
        if not login or not password:
            raise ValidationError("Login and password are required to verify credentials")
        if self.verifier is None:
            raise ValidationError("Credential verification service is not configured",
                                  code="VERIFIER_NOT_CONFIGURED")
        env_vars = {}
        if environment_id:
            environment = self.store.get_environment(environment_id)
            if environment is not None:
                env_vars = self._environment_vars(environment)
        return await self._run_verifier(integration_id, login, password, env_vars)
    
    async def update_credentials(self, environment_id: str, integration_id: str,
                                 login: Optional[str] = None, password: Optional[str] = None,
                                 verify: bool = True,
                                 user_id: Optional[str] = None) -> CredentialUpdateResult:
        """
        Write an integration's login and/or password into the credential file.
        
        With ``verify`` and both fields supplied the external check runs first;
        a rejection or an error while checking blocks the write.
        """
        environment = self.store.require_environment(environment_id)
        self.require_permitted(environment, integration_id)
        if not login and not password:
            raise ValidationError("Login or password must be provided", code="MISSING_CREDENTIALS")
        
        verification = None
        if verify and login and password:
            if self.verifier is None:
                logger.warning(f"No verifier configured; writing {integration_id} credentials unchecked")
            else:
                verification = await self._run_verifier(
                    integration_id, login, password, self._environment_vars(environment)
                )
                if not verification.success:
                    log_action(logger, "warning", f"Credential verification failed for {integration_id}",
                               user_id=user_id, action="update_credentials", resource=environment_id,
                               extra={"banco": integration_id})
                    raise VerificationFailedError(
                        f"Credential verification failed: {verification.message}",
                        verification=verification.to_dict()
                    )
        
        env_file = self.environment_file(environment)
        content = self._read_environment_file(env_file) if env_file.is_file() else ""
        updated = self.codec.write(content, integration_id, login=login, password=password)
        self._write_environment_file(env_file, updated)
        
        log_action(logger, "info", f"Credentials of {integration_id} updated in {environment.name}",
                   user_id=user_id, action="update_credentials", resource=environment_id,
                   extra={"banco": integration_id, "login": bool(login), "senha": bool(password)})
        return CredentialUpdateResult(environment_id=environment_id, integration_id=integration_id,
                                      verification=verification)
    
    # Deletion
    
    def delete(self, environment_id: str, user_id: Optional[str] = None) -> DeleteResult:
        """Remove the record, then try to remove the directory tree"""
        environment = self.store.delete_environment(environment_id)
        path = self.environment_path(environment)
        removed, warning = False, None
        
        if not environment.directory or environment.directory == self.config.template_directory:
            warning = f"Directory {environment.directory or '(none)'} was not removed"
        elif path.exists():
            try:
                shutil.rmtree(path)
                removed = True
            except OSError as e:
                warning = f"Environment removed, but its directory could not be deleted: {e}"
                logger.warning(warning)
        
        log_action(logger, "info", f"Environment {environment.name} deleted",
                   user_id=user_id, action="delete", resource=environment_id,
                   extra={"diretorioRemovido": removed})
        return DeleteResult(environment=environment, directory_removed=removed, warning=warning)
    
    # Catalog
    
    def refresh_available_integrations(self) -> List[Dict[str, Any]]:
        """Replace the stored catalog with the integrations present in the template tree"""
        entries = [
            i.to_catalog_entry()
            for i in self.detector.detect_available_integrations(self.template_path)
        ]
        self.store.set_available_integrations(entries)
        logger.info(f"Available integrations refreshed: {[e['id'] for e in entries]}")
        return entries
