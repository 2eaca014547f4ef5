"""
Environment Detector

Scans the base directory for environment directories named
``<prefix><port><suffix>`` and infers which integrations each one carries
from the integration subdirectories present.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .catalog import Integration, IntegrationCatalog, DEFAULT_CATALOG

logger = logging.getLogger("env_admin.detector")


@dataclass
class DetectedEnvironment:
    """An environment directory found on disk"""
    name: str
    port: int
    directory: str
    path: str
    integrations: List[str] = field(default_factory=list)
    has_credential_file: bool = False
    
    def to_dict(self) -> Dict[str, object]:
        return {
            "nome": self.name,
            "porta": self.port,
            "path": self.directory,
            "pathCompleto": self.path,
            "bancosPermitidos": self.integrations,
            "existe": True,
            "temEnv": self.has_credential_file
        }


class EnvironmentDetector:
    """Filesystem scanner for environment directories"""
    
    def __init__(self, base_path: Union[str, Path],
                 catalog: IntegrationCatalog = DEFAULT_CATALOG,
                 prefix: str = "rota-", suffix: str = ".producao",
                 reserved_port: Optional[int] = 7000,
                 environment_file: str = ".env"):
        self.base_path = Path(base_path)
        self.catalog = catalog
        self.reserved_port = reserved_port
        self.environment_file = environment_file
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+){re.escape(suffix)}$")
    
    def match_port(self, name: str) -> Optional[int]:
        """Port encoded in a directory name, or None if the name does not match"""
        match = self._pattern.match(name)
        if not match:
            return None
        port = int(match.group(1))
        if port <= 0 or port == self.reserved_port:
            return None
        return port
    
    def detect(self) -> List[DetectedEnvironment]:
        """Detected environments sorted by port; scan failures yield an empty list"""
        try:
            entries = list(self.base_path.iterdir())
        except OSError as e:
            logger.error(f"Error scanning {self.base_path} for environments: {e}")
            return []
        
        detected = []
        for entry in entries:
            port = self.match_port(entry.name)
            if port is None:
                continue
            try:
                if not entry.is_dir():
                    continue
                detected.append(DetectedEnvironment(
                    name=f"Ambiente {port}",
                    port=port,
                    directory=entry.name,
                    path=str(entry),
                    integrations=[i.id for i in self._present_integrations(entry)],
                    has_credential_file=(entry / self.environment_file).is_file()
                ))
            except OSError as e:
                logger.warning(f"Error processing {entry.name}: {e}")
        
        detected.sort(key=lambda d: d.port)
        return detected
    
    def detect_available_integrations(self, template_path: Union[str, Path]) -> List[Integration]:
        """Catalog integrations whose code directory exists in the template tree"""
        try:
            return self._present_integrations(Path(template_path))
        except OSError as e:
            logger.error(f"Error scanning template tree {template_path}: {e}")
            return []
    
    def _present_integrations(self, root: Path) -> List[Integration]:
        return [i for i in self.catalog if (root / i.directory).is_dir()]
