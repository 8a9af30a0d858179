from fastapi import HTTPException, Request, status

from jobsync.services.runtime import SyncRuntime


def get_runtime(request: Request) -> SyncRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="sync runtime not started")
    return runtime
