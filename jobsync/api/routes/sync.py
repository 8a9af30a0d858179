from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from jobsync.api.deps import get_runtime
from jobsync.core.errors import UnknownSourceError
from jobsync.core.security import require_sync_secret
from jobsync.schemas.sync import CleanupStats, SyncRun
from jobsync.services.runtime import SyncRuntime

router = APIRouter()


@router.get("/status")
async def sync_status(runtime: SyncRuntime = Depends(get_runtime)) -> dict[str, Any]:
    status_model = await runtime.orchestrator.status()
    return {
        "orchestrator": status_model.model_dump(mode="json"),
        "cache": runtime.cache.stats(),
    }


# Declared before the parameterized route so "cleanup" is never read as a source tag.
@router.post("/cleanup", response_model=CleanupStats, dependencies=[Depends(require_sync_secret)])
async def run_cleanup(runtime: SyncRuntime = Depends(get_runtime)) -> CleanupStats:
    return await runtime.orchestrator.run_cleanup()


@router.post("/{source}", response_model=SyncRun, dependencies=[Depends(require_sync_secret)])
async def force_sync(source: str, runtime: SyncRuntime = Depends(get_runtime)) -> SyncRun:
    try:
        run = await runtime.orchestrator.force_sync(source)
    except UnknownSourceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if run is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"sync already running for {source}")
    return run
