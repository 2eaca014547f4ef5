"""
CLT lookup endpoints: single simulation across integrations and batches
"""

from fastapi import APIRouter, BackgroundTasks, Depends

from .auth import AdminSystem, Principal, get_admin_system, require_permission
from .schemas import BatchRequest, SimulateRequest
from ..access import Permission
from ..batch import LookupSubject, LookupTarget
from ..exceptions import NotFoundError, ForbiddenError


router = APIRouter()


def resolve_target(system: AdminSystem, principal: Principal) -> LookupTarget:
    """
    Environment server a caller's lookups go through.
    
    Logins use their own environment. Administrators use the environment on the
    template port, or a placeholder id for it when none is registered.
    """
    if not principal.is_admin:
        environment = system.environment_store.get_environment(principal.environment_id)
        if environment is not None:
            return LookupTarget(port=environment.port, environment_id=environment.id)
    port = system.config.template_port
    environment = system.environment_store.get_environment_by_port(port)
    return LookupTarget(port=port, environment_id=environment.id if environment else f"temp-{port}")


@router.post("/simulate")
async def simulate(
    request: SimulateRequest,
    principal: Principal = Depends(require_permission(Permission.CLT_SINGLE)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Simulate one subject against the selected integrations"""
    subject = LookupSubject(
        cpf=request.cpf,
        phone=request.telefone,
        birth_date=request.dataNascimento,
        name=request.nome or ""
    )
    results = await system.batch_processor.simulate_many(
        subject, request.integrations, resolve_target(system, principal)
    )
    return {"success": True, "resultados": {i: r.to_dict() for i, r in results.items()}}


@router.post("/batch")
async def create_batch(
    request: BatchRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_permission(Permission.CLT_BATCH)),
    system: AdminSystem = Depends(get_admin_system)
):
    """Queue a batch; progress is polled through the status endpoint"""
    job = system.batch_processor.submit(
        request.records, request.integrations, resolve_target(system, principal)
    )
    background_tasks.add_task(system.batch_processor.run, job.id)
    return {"success": True, "loteId": job.id, "message": "Batch created, processing started"}


@router.get("/batch/{job_id}")
def batch_status(
    job_id: str,
    principal: Principal = Depends(require_permission(Permission.CLT_BATCH)),
    system: AdminSystem = Depends(get_admin_system)
):
    job = system.batch_processor.job_store.get(job_id)
    if job is None:
        raise NotFoundError(f"Batch not found: {job_id}", code="BATCH_NOT_FOUND")
    if not principal.is_admin and job.target.environment_id != principal.environment_id:
        raise ForbiddenError("Batch belongs to another environment", code="ENVIRONMENT_FORBIDDEN")
    return {"success": True, "lote": job.to_dict()}
