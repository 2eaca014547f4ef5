"""
Directory Synchronizer

Mirrors a template directory tree into an environment, skipping dependency
caches, logs, version control and dot-entries. When the tree belongs to an
integration, the copied config file is stripped of other integrations' keys.

A copy is idempotent per file but not atomic: if it raises, the destination
may be partially written and should be re-copied.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .catalog import IntegrationCatalog, DEFAULT_CATALOG
from .credentials import CredentialCodec
from .exceptions import FilesystemError, NotFoundError

logger = logging.getLogger("env_admin.sync")

EXCLUDED_NAMES = frozenset({"node_modules", "logs", ".git", "__pycache__"})


def is_excluded(name: str) -> bool:
    """Entries never copied from a template tree"""
    return name in EXCLUDED_NAMES or name.startswith(".")


@dataclass
class CopyReport:
    """Outcome of one directory copy"""
    source: str
    destination: str
    files_copied: int = 0
    directories_created: int = 0
    skipped: List[str] = field(default_factory=list)
    config_filtered: bool = False
    
    def to_dict(self) -> Dict[str, object]:
        return {
            "source": self.source,
            "destination": self.destination,
            "filesCopied": self.files_copied,
            "directoriesCreated": self.directories_created,
            "skipped": self.skipped,
            "configFiltered": self.config_filtered
        }


class DirectorySynchronizer:
    """Recursive template-to-environment copier"""
    
    def __init__(self, catalog: IntegrationCatalog = DEFAULT_CATALOG,
                 codec: Optional[CredentialCodec] = None,
                 config_file: str = "config/config.env"):
        self.catalog = catalog
        self.codec = codec or CredentialCodec(catalog)
        self.config_file = config_file
    
    def copy(self, source: Union[str, Path], destination: Union[str, Path],
             integration_id: Optional[str] = None) -> CopyReport:
        """
        Copy ``source`` into ``destination``.
        
        Existing destination files are overwritten. Per-file failures do not stop
        the walk; once it finishes they are raised together as FilesystemError.
        """
        source = Path(source)
        destination = Path(destination)
        if integration_id is not None:
            self.catalog.require(integration_id)
        if not source.is_dir():
            raise NotFoundError(f"Source directory not found: {source}", code="SOURCE_NOT_FOUND")
        
        report = CopyReport(source=str(source), destination=str(destination))
        failures: List[Dict[str, str]] = []
        self._copy_tree(source, destination, report, failures)
        
        if integration_id is not None and not failures:
            report.config_filtered = self._filter_config(destination, integration_id, failures)
        
        if failures:
            logger.error(f"Copy {source} -> {destination} finished with {len(failures)} failure(s)")
            raise FilesystemError(
                f"Failed to copy {len(failures)} entr{'y' if len(failures) == 1 else 'ies'} "
                f"from {source} to {destination}",
                failures=failures
            )
        
        logger.debug(f"Copied {report.files_copied} file(s) from {source} to {destination}")
        return report
    
    def _copy_tree(self, source: Path, destination: Path, report: CopyReport,
                   failures: List[Dict[str, str]]) -> None:
        try:
            if not destination.exists():
                destination.mkdir(parents=True)
                report.directories_created += 1
            entries = sorted(source.iterdir())
        except OSError as e:
            failures.append({"path": str(source), "error": str(e)})
            return
        
        for entry in entries:
            if is_excluded(entry.name):
                report.skipped.append(str(entry))
                continue
            target = destination / entry.name
            if entry.is_dir():
                self._copy_tree(entry, target, report, failures)
                continue
            try:
                shutil.copyfile(entry, target)
                report.files_copied += 1
            except OSError as e:
                failures.append({"path": str(entry), "error": str(e)})
    
    def _filter_config(self, destination: Path, integration_id: str,
                       failures: List[Dict[str, str]]) -> bool:
        config_path = destination / self.config_file
        if not config_path.is_file():
            return False
        try:
            content = config_path.read_text(encoding="utf-8")
            config_path.write_text(self.codec.filter(content, integration_id), encoding="utf-8")
        except OSError as e:
            failures.append({"path": str(config_path), "error": str(e)})
            return False
        return True
