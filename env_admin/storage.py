"""
Document Storage Module

The whole administration state is one JSON document. Every mutation loads the
document, applies an in-memory transform and writes the full document back.

``update`` accepts an optional expected revision: when given and stale, the
write is refused with ConflictError. Callers that omit it get last-writer-wins.
Writers in other processes are not coordinated at all.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
import json
import logging
import os
import tempfile
import threading

from .exceptions import ConflictError, StorageIOError
from .catalog import DEFAULT_CATALOG
from .passwords import make_password

logger = logging.getLogger("env_admin.storage")

SCHEMA_VERSION = "1.0.0"

# Collections every document must carry; older documents lack some of them
COLLECTIONS = ("ambientes", "perfis", "logins", "bancosDisponiveis")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_catalog_entries() -> list:
    """Catalog rows written into a brand new document"""
    return [integration.to_catalog_entry() for integration in DEFAULT_CATALOG]


def build_initial_document(admin_username: str = "admin",
                           admin_password: str = "admin123") -> Dict[str, Any]:
    """Build the document written when no database exists yet"""
    password_hash, salt = make_password(admin_password)
    return {
        "version": SCHEMA_VERSION,
        "revision": 0,
        "admin": {
            "usuarios": [
                {
                    "id": "admin-1",
                    "username": admin_username,
                    "passwordHash": password_hash,
                    "passwordSalt": salt,
                    "role": "admin",
                    "criadoEm": utc_now_iso()
                }
            ]
        },
        "perfis": [],
        "logins": [],
        "ambientes": [],
        "bancosDisponiveis": default_catalog_entries(),
        "ultimaSincronizacao": None
    }


def migrate_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in collections and counters missing from older documents"""
    for collection in COLLECTIONS:
        if not isinstance(data.get(collection), list):
            data[collection] = []
    data.setdefault("admin", {"usuarios": []})
    data["admin"].setdefault("usuarios", [])
    data.setdefault("version", SCHEMA_VERSION)
    data.setdefault("revision", 0)
    data.setdefault("ultimaSincronizacao", None)
    return data


@dataclass
class Document:
    """Snapshot of the stored document"""
    data: Dict[str, Any]
    revision: int


class DocumentStore(ABC):
    """Abstract whole-document repository"""
    
    def __init__(self):
        self._lock = threading.RLock()
    
    @abstractmethod
    def _read(self) -> Dict[str, Any]:
        """Load the raw document"""
        pass
    
    @abstractmethod
    def _write(self, data: Dict[str, Any]) -> None:
        """Persist the raw document"""
        pass
    
    def get(self) -> Document:
        """Return a private copy of the current document"""
        with self._lock:
            data = migrate_document(self._read())
            return Document(data=data, revision=data["revision"])
    
    def update(self, transform: Callable[[Dict[str, Any]], Any],
               expected_revision: Optional[int] = None) -> Any:
        """
        Apply ``transform`` to the document and write it back.
        
        ``transform`` mutates the dict it receives and may return a value, which
        ``update`` passes through. If it raises, nothing is written.
        """
        with self._lock:
            data = migrate_document(self._read())
            if expected_revision is not None and data["revision"] != expected_revision:
                raise ConflictError(
                    f"Document changed since revision {expected_revision} "
                    f"(now {data['revision']})",
                    code="REVISION_CONFLICT"
                )
            result = transform(data)
            data["revision"] += 1
            self._write(data)
            return result


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store for testing"""
    
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        super().__init__()
        self._data = json.loads(json.dumps(initial if initial is not None else build_initial_document()))
    
    def _read(self) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(self._data))
    
    def _write(self, data: Dict[str, Any]) -> None:
        self._data = json.loads(json.dumps(data, default=str))


class JSONFileDocumentStore(DocumentStore):
    """JSON file document store; the file is created from the default schema when missing"""
    
    def __init__(self, path: Union[str, Path], admin_username: str = "admin",
                 admin_password: str = "admin123"):
        super().__init__()
        self.path = Path(path)
        self._admin_username = admin_username
        self._admin_password = admin_password
    
    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            data = build_initial_document(self._admin_username, self._admin_password)
            self._write(data)
            logger.info(f"Created database at {self.path}")
            return data
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as e:
            raise StorageIOError(f"Error reading database {self.path}: {e}", code="DB_READ_ERROR")
        if not isinstance(data, dict):
            raise StorageIOError(f"Database {self.path} is not a JSON object", code="DB_READ_ERROR")
        return data
    
    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".database-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, ensure_ascii=False, default=str)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            logger.error(f"Error saving database {self.path}: {e}")
            raise StorageIOError(f"Error saving database: {e}")
