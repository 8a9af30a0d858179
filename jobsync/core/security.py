import hmac

from fastapi import Depends, Header, HTTPException, status

from jobsync.core.config import Settings, get_settings


async def require_sync_secret(
    settings: Settings = Depends(get_settings),
    x_sync_secret: str | None = Header(default=None, alias="X-Sync-Secret"),
) -> None:
    if not settings.sync_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="manual sync is disabled: JOBSYNC_SYNC_SECRET is not configured",
        )
    if not x_sync_secret or not hmac.compare_digest(x_sync_secret.encode("utf-8"), settings.sync_secret.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid sync secret")
