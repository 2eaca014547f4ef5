"""
Batch Lookup Module

Single and batch "CLT" simulations proxied to the partner integrations through
an environment's own server. Batch jobs are processed in waves: up to
``window`` records run concurrently and the next wave starts only after the
whole current wave has finished.

Job state lives behind the ``JobStore`` interface. The default store keeps
jobs in process memory, so they vanish on restart and are never evicted.
"""

import asyncio
import httpx
import logging
import re
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import NotFoundError, ValidationError

logger = logging.getLogger("env_admin.batch")

PROCESSING = "processing"
DONE = "done"

_NON_DIGITS = re.compile(r"\D")


def digits(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


@dataclass
class LookupSubject:
    """Person whose payroll-loan offer is simulated"""
    cpf: str
    phone: str
    birth_date: str
    name: str = ""
    
    def __post_init__(self):
        self.cpf = digits(self.cpf)
        self.phone = digits(self.phone)
        if not self.cpf or not self.phone or not self.birth_date:
            raise ValidationError("CPF, phone and birth date are required")
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LookupSubject':
        return cls(
            cpf=str(data.get("cpf") or ""),
            phone=str(data.get("telefone") or ""),
            birth_date=str(data.get("dataNascimento") or ""),
            name=str(data.get("nome") or "")
        )


@dataclass
class LookupResult:
    """Answer of one integration for one subject"""
    integration_id: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status: Optional[int] = None
    
    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "banco": self.integration_id.upper(), "dados": self.data}
        return {
            "success": False,
            "banco": self.integration_id.upper(),
            "error": self.error or "Unknown error",
            "status": self.status
        }


@dataclass
class LookupTarget:
    """Environment server the lookups are routed through"""
    port: int
    environment_id: str


class LookupClient(ABC):
    """Partner lookup collaborator"""
    
    @abstractmethod
    async def simulate(self, integration_id: str, subject: LookupSubject,
                       target: LookupTarget) -> LookupResult:
        pass
    
    async def close(self):
        pass


class HttpLookupClient(LookupClient):
    """Posts simulations to the integration routes of an environment's server"""
    
    def __init__(self, host: str = "127.0.0.1",
                 path_template: str = "/api/clt/{integration}/simular",
                 timeout: float = 60.0):
        self.host = host
        self.path_template = path_template
        self._client = httpx.AsyncClient(timeout=timeout)
    
    def url_for(self, integration_id: str, port: int) -> str:
        return f"http://{self.host}:{port}{self.path_template.format(integration=integration_id)}"
    
    async def simulate(self, integration_id: str, subject: LookupSubject,
                       target: LookupTarget) -> LookupResult:
        try:
            response = await self._client.post(
                self.url_for(integration_id, target.port),
                json={
                    "cpf": subject.cpf,
                    "telefone": subject.phone,
                    "dataNascimento": subject.birth_date,
                    "nome": subject.name,
                    "ambienteId": target.environment_id
                }
            )
        except httpx.HTTPError as e:
            logger.error(f"Lookup via port {target.port} for {integration_id} failed: {e}")
            return LookupResult(integration_id, False, error=str(e))
        
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"dados": body}
        if response.status_code == 200 and body.get("success", True):
            return LookupResult(integration_id, True, data=body.get("data", body))
        return LookupResult(
            integration_id, False,
            error=body.get("error") or body.get("message") or f"HTTP {response.status_code}",
            status=response.status_code
        )
    
    async def close(self):
        await self._client.aclose()


@dataclass
class JobProgress:
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    
    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "processados": self.processed,
            "sucesso": self.succeeded,
            "erro": self.failed
        }


@dataclass
class BatchJob:
    """An in-flight or finished batch of lookups"""
    id: str
    subjects: List[Dict[str, Any]]
    integrations: List[str]
    target: LookupTarget
    status: str = PROCESSING
    progress: Optional[JobProgress] = None
    results: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    
    def __post_init__(self):
        if self.progress is None:
            self.progress = JobProgress(total=len(self.subjects))
    
    @property
    def done(self) -> bool:
        return self.status == DONE
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bancos": self.integrations,
            "porta": self.target.port,
            "ambienteId": self.target.environment_id,
            "status": self.status,
            "progresso": self.progress.to_dict(),
            "resultados": list(self.results),
            "criadoEm": self.created_at.isoformat(),
            "concluidoEm": self.finished_at.isoformat() if self.finished_at else None
        }


class JobStore(ABC):
    """Job state repository: create, get, update progress"""
    
    @abstractmethod
    def create(self, job: BatchJob) -> BatchJob:
        pass
    
    @abstractmethod
    def get(self, job_id: str) -> Optional[BatchJob]:
        pass
    
    @abstractmethod
    def update_progress(self, job_id: str, succeeded: bool, result: Dict[str, Any]) -> BatchJob:
        """Record one finished record"""
        pass
    
    @abstractmethod
    def finish(self, job_id: str) -> BatchJob:
        pass


class InMemoryJobStore(JobStore):
    """Process-local job store"""
    
    def __init__(self):
        self._jobs: Dict[str, BatchJob] = {}
        self._lock = threading.Lock()
    
    def create(self, job: BatchJob) -> BatchJob:
        with self._lock:
            self._jobs[job.id] = job
        return job
    
    def get(self, job_id: str) -> Optional[BatchJob]:
        return self._jobs.get(job_id)
    
    def _require(self, job_id: str) -> BatchJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Batch not found: {job_id}", code="BATCH_NOT_FOUND")
        return job
    
    def update_progress(self, job_id: str, succeeded: bool, result: Dict[str, Any]) -> BatchJob:
        with self._lock:
            job = self._require(job_id)
            job.progress.processed += 1
            if succeeded:
                job.progress.succeeded += 1
            else:
                job.progress.failed += 1
            job.results.append(result)
            return job
    
    def finish(self, job_id: str) -> BatchJob:
        with self._lock:
            job = self._require(job_id)
            job.status = DONE
            job.finished_at = datetime.now(timezone.utc)
            return job


class BatchProcessor:
    """Runs single and batch lookups through a LookupClient"""
    
    def __init__(self, client: LookupClient, job_store: Optional[JobStore] = None,
                 window: int = 10):
        if window < 1:
            raise ValueError("window must be at least 1")
        self.client = client
        self.job_store = job_store or InMemoryJobStore()
        self.window = window
    
    @staticmethod
    def _check_integrations(integrations: Iterable[str]) -> List[str]:
        integrations = list(dict.fromkeys(integrations or []))
        if not integrations:
            raise ValidationError("Select at least one integration")
        return integrations
    
    async def simulate_many(self, subject: LookupSubject, integrations: Iterable[str],
                            target: LookupTarget) -> Dict[str, LookupResult]:
        """One subject against several integrations concurrently"""
        integrations = self._check_integrations(integrations)
        results = await asyncio.gather(
            *(self.client.simulate(i, subject, target) for i in integrations),
            return_exceptions=True
        )
        by_integration = {}
        for integration_id, result in zip(integrations, results):
            if isinstance(result, Exception):
                logger.error(f"Lookup for {integration_id} raised: {result}")
                result = LookupResult(integration_id, False, error=str(result))
            by_integration[integration_id] = result
        return by_integration
    
    def submit(self, subjects: List[Dict[str, Any]], integrations: Iterable[str],
               target: LookupTarget) -> BatchJob:
        """Register a job in ``processing`` state; ``run`` does the work"""
        integrations = self._check_integrations(integrations)
        job = BatchJob(
            id=f"lote-{uuid.uuid4().hex[:12]}",
            subjects=list(subjects or []),
            integrations=integrations,
            target=target
        )
        self.job_store.create(job)
        logger.info(f"Batch {job.id} created with {len(job.subjects)} record(s)")
        return job
    
    async def run(self, job_id: str) -> BatchJob:
        job = self.job_store.get(job_id)
        if job is None:
            raise NotFoundError(f"Batch not found: {job_id}", code="BATCH_NOT_FOUND")
        
        for start in range(0, len(job.subjects), self.window):
            wave = job.subjects[start:start + self.window]
            await asyncio.gather(*(self._process(job, item) for item in wave))
        
        job = self.job_store.finish(job_id)
        logger.info(f"Batch {job_id} done: {job.progress.succeeded} ok, {job.progress.failed} failed")
        return job
    
    async def _process(self, job: BatchJob, item: Dict[str, Any]) -> None:
        try:
            subject = LookupSubject.from_dict(item)
            results = await self.simulate_many(subject, job.integrations, job.target)
        except Exception as e:
            logger.warning(f"Batch {job.id} record failed: {e}")
            self.job_store.update_progress(job.id, False, {
                "cpf": digits(str(item.get("cpf") or "")),
                "sucesso": False,
                "erro": getattr(e, "message", str(e))
            })
            return
        
        succeeded = any(r.success for r in results.values())
        self.job_store.update_progress(job.id, succeeded, {
            "cpf": subject.cpf,
            "sucesso": succeeded,
            "resultados": {i: r.to_dict() for i, r in results.items()},
            "erro": None if succeeded else "All integrations failed"
        })
