from fastapi import APIRouter, Depends

from cuentas.core.config import Settings
from cuentas.routers.common import get_app_settings

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness check")
async def health(settings: Settings = Depends(get_app_settings)):
    return {"status": "ok", "app": settings.app_name, "version": settings.version}
