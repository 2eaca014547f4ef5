"""
Integration Catalog Module

The fixed set of partner banking integrations an environment can carry. Each
integration knows where its code lives in the template tree, which keys of a
credential file hold its login and password, and which lines of a copied
config file belong to it.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .exceptions import ValidationError


@dataclass(frozen=True)
class CredentialKeys:
    """Credential file key names for one integration"""
    login: str
    password: str
    login_alternate: Optional[str] = None
    password_alternate: Optional[str] = None
    
    def candidates(self, field_name: str) -> Tuple[str, ...]:
        """Key names for ``field_name`` ("login" or "password"), primary first"""
        if field_name == "login":
            primary, alternate = self.login, self.login_alternate
        elif field_name == "password":
            primary, alternate = self.password, self.password_alternate
        else:
            raise ValidationError(f"Unknown credential field: {field_name}")
        if alternate and alternate != primary:
            return (primary, alternate)
        return (primary,)


@dataclass(frozen=True)
class FilterRules:
    """Line prefixes kept in, and dropped from, a copied config file"""
    keep: Tuple[str, ...] = ()
    drop: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Integration:
    """A partner banking integration"""
    id: str
    name: str
    directory: str  # Subdirectory in the template tree; may differ from id
    credential_keys: CredentialKeys
    description: str = ""
    filter_rules: Optional[FilterRules] = None
    
    def to_catalog_entry(self) -> Dict[str, object]:
        """Row stored in the ``bancosDisponiveis`` collection"""
        return {
            "id": self.id,
            "nome": self.name,
            "descricao": self.description,
            "ativo": True,
            "path": self.directory
        }


# Connection settings every integration may keep from the template config
_COMMON_KEEP = ("PORT=", "NODE_ENV=", "LOG_", "KENTRO_")
# Shared V8 endpoints used by the other two integrations, without V8's own secrets
_V8_ENDPOINTS = ("V8_API_URL=", "V8_AUTH_URL=", "V8_CLIENT_ID=", "V8_AUDIENCE=")


class IntegrationCatalog:
    """Lookup table over a fixed list of integrations"""
    
    def __init__(self, integrations: Iterable[Integration]):
        self._by_id: Dict[str, Integration] = {}
        self._by_directory: Dict[str, Integration] = {}
        for integration in integrations:
            if integration.id in self._by_id:
                raise ValueError(f"Duplicate integration id: {integration.id}")
            self._by_id[integration.id] = integration
            self._by_directory[integration.directory] = integration
    
    def __iter__(self) -> Iterator[Integration]:
        return iter(self._by_id.values())
    
    def __len__(self) -> int:
        return len(self._by_id)
    
    def __contains__(self, integration_id: str) -> bool:
        return integration_id in self._by_id
    
    def ids(self) -> List[str]:
        return list(self._by_id)
    
    def get(self, integration_id: str) -> Optional[Integration]:
        return self._by_id.get(integration_id)
    
    def by_directory(self, directory: str) -> Optional[Integration]:
        return self._by_directory.get(directory)
    
    def require(self, integration_id: str) -> Integration:
        """Get an integration or raise ValidationError"""
        integration = self._by_id.get(integration_id)
        if not integration:
            raise ValidationError(f"Unknown integration: {integration_id}", code="UNKNOWN_INTEGRATION")
        return integration
    
    def validate_ids(self, integration_ids: Iterable[str]) -> List[str]:
        """Return the ids de-duplicated in order, rejecting any not in the catalog"""
        unknown = [i for i in integration_ids if i not in self._by_id]
        if unknown:
            raise ValidationError(
                f"Unknown integrations: {', '.join(sorted(set(unknown)))}",
                code="UNKNOWN_INTEGRATION"
            )
        return list(dict.fromkeys(integration_ids))


DEFAULT_CATALOG = IntegrationCatalog([
    Integration(
        id="presencabank",
        name="Presença Bank",
        description="Sistema Presença Bank",
        directory="presençabank",
        credential_keys=CredentialKeys(
            login="PRECENÇABANK_LOGIN",
            password="PRECENÇABANK_SENHA",
            login_alternate="PRECENÇABANK_USR",
            password_alternate="PRECENÇABANK_PASS"
        ),
        filter_rules=FilterRules(
            keep=("PRECENÇABANK_", "TESTE_") + _COMMON_KEEP + _V8_ENDPOINTS,
            drop=("HUBCREDITO_", "V8_USERNAME=", "V8_PASSWORD=")
        )
    ),
    Integration(
        id="v8",
        name="V8 Digital",
        description="Sistema V8 Digital CLT",
        directory="V8",
        credential_keys=CredentialKeys(
            login="V8_USERNAME",
            password="V8_PASSWORD",
            login_alternate="V8_USR",
            password_alternate="V8_PASS"
        ),
        filter_rules=FilterRules(
            keep=("V8_", "HTTPS_PORT=") + _COMMON_KEEP,
            drop=("PRECENÇABANK_", "HUBCREDITO_")
        )
    ),
    Integration(
        id="hubcredito",
        name="HubCredito",
        description="Sistema HubCredito CLT",
        directory="hubcredito",
        credential_keys=CredentialKeys(
            login="HUBCREDITO_USR",
            password="HUBCREDITO_PASS"
        ),
        filter_rules=FilterRules(
            keep=("HUBCREDITO_", "TESTE_") + _COMMON_KEEP + _V8_ENDPOINTS,
            drop=("PRECENÇABANK_", "V8_USERNAME=", "V8_PASSWORD=")
        )
    ),
])
