"""Config push and reload (config file master over env; push overrides at runtime)."""
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from voxelhub.api.deps import get_current_user
from voxelhub.domain.common.errors import AuthorizationError
from voxelhub.domain.users.models import User
from voxelhub.settings import get_config_store, settings

router = APIRouter()


def require_config_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only users listed in config_admin_emails may change runtime config."""
    allowed = {email.strip().lower() for email in settings.config_admin_emails}
    if current_user.email.lower() not in allowed:
        raise AuthorizationError("Config changes are restricted to administrators")
    return current_user


@router.post("/config", status_code=status.HTTP_200_OK)
async def update_config(
    body: dict[str, Any] = Body(..., embed=False),
    current_user: User = Depends(require_config_admin),
):
    """
    Push config overrides at runtime. Merges into in-memory overrides; config file remains master over env.
    Validation errors keep the previous config.
    """
    if not get_config_store().update(body):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Config update failed: invalid settings, previous config kept",
        )
    return {"ok": True, "message": "Config updated"}


@router.post("/config/reload", status_code=status.HTTP_200_OK)
async def reload_config(current_user: User = Depends(require_config_admin)):
    """Re-read the config file and reapply saved overrides."""
    if not get_config_store().reload_from_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Config reload failed: invalid settings, previous config kept",
        )
    return {"ok": True, "message": "Config reloaded from file"}


@router.post("/config/clear-overrides", status_code=status.HTTP_200_OK)
async def clear_config_overrides(current_user: User = Depends(require_config_admin)):
    """Drop pushed overrides and reset to config file (master) + env."""
    get_config_store().clear_overrides()
    return {"ok": True, "message": "Overrides cleared"}
