"""
api/routes/v1/settings.py -- Admin-tunable security policy.

Routes:
  GET    /api/v1/settings       -- effective value of every setting (admin only)
  PUT    /api/v1/settings       -- set one setting by dotted id (admin only)
  DELETE /api/v1/settings/{id}  -- reset one setting to its default (admin only)

Ids are resolved through auth.app_settings.lookup(), so only the closed set
of known keys ever reaches the database. Unknown ids answer 404.
"""

from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Response

from api.models import SettingUpdate
from auth import app_settings
from auth.dependencies import require_admin
from auth.session import Session

router = APIRouter()


@router.get("/settings")
def list_settings(session: Session = Depends(require_admin)) -> dict[str, Union[bool, int]]:
    return app_settings.values()


@router.put("/settings", status_code=204)
def update_setting(body: SettingUpdate, session: Session = Depends(require_admin)) -> Response:
    """Validate and store one setting. Takes effect on the next login or password change."""
    app_settings.lookup(body.id).set(session, body.value)
    return Response(status_code=204)


@router.delete("/settings/{setting_id}", status_code=204)
def reset_setting(setting_id: str, session: Session = Depends(require_admin)) -> Response:
    app_settings.lookup(setting_id).reset(session)
    return Response(status_code=204)
