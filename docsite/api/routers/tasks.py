from fastapi import APIRouter, Depends

from docsite.models.api import AnalysisRequest, LoadModuleRequest, SchedulerStatus, TaskAccepted
from docsite.services.context import AppContext
from docsite.services.sync import sync_modules
from docsite.services.tasks import AnalysisTask, LoadModuleTask

from ..deps import get_context

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=SchedulerStatus)
async def scheduler_status(ctx: AppContext = Depends(get_context)):
    return SchedulerStatus(**ctx.scheduler.status())


@router.post("/load", response_model=TaskAccepted, status_code=202)
async def queue_load(payload: LoadModuleRequest, ctx: AppContext = Depends(get_context)):
    """Queue a registry load; documentation and analysis follow in the same task."""
    task = LoadModuleTask(payload.module, payload.version)
    return TaskAccepted(id=ctx.scheduler.enqueue(task), kind=task.kind)


@router.post("/analysis", response_model=TaskAccepted, status_code=202)
async def queue_analysis(payload: AnalysisRequest, ctx: AppContext = Depends(get_context)):
    task = AnalysisTask(payload.module, payload.version, payload.force)
    return TaskAccepted(id=ctx.scheduler.enqueue(task), kind=task.kind)


@router.post("/sync", status_code=202)
async def queue_sync(ctx: AppContext = Depends(get_context)):
    """Queue a load for every module whose latest version changed upstream."""
    ids = await sync_modules(ctx)
    return {"queued": ids}
