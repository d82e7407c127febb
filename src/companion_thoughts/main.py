from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .daemon import CompanionDaemon


class ScheduleRequest(BaseModel):
    interval_minutes: float | None = Field(default=None, gt=0)


class SettingsPatch(BaseModel):
    """Partial update of the runtime switches."""
    enabled: bool | None = None
    frequency_minutes: float | None = Field(default=None, ge=1)
    city: str | None = Field(default=None, min_length=1)


def _make_auth_dependency(token: str):
    """Create a FastAPI dependency that validates the Authorization: Bearer token."""
    async def _verify_token(request: Request) -> None:
        if not token:
            return
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
        provided = auth_header[7:]
        if not secrets.compare_digest(provided, token):
            raise HTTPException(status_code=401, detail="Invalid API token")
    return _verify_token


def build_app(daemon: CompanionDaemon) -> FastAPI:
    """Admin API over a running daemon.

    Handlers that touch daemon state are coroutines so they run on the
    daemon's event loop rather than in the threadpool.
    """
    verify_token = _make_auth_dependency(daemon.settings.admin_api_token)

    app = FastAPI(title="Companion Thoughts Admin API", version="0.1.0")
    app.state.daemon = daemon

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/schedules", dependencies=[Depends(verify_token)])
    async def schedules() -> list[dict[str, Any]]:
        return app.state.daemon.scheduler.active_schedules()

    @app.post("/schedules/{entity_id}", dependencies=[Depends(verify_token)])
    async def start_schedule(entity_id: str, body: ScheduleRequest | None = None) -> dict[str, Any]:
        interval = body.interval_minutes if body is not None else None
        entry = app.state.daemon.scheduler.start_schedule(entity_id, interval)
        if entry is None:
            raise HTTPException(status_code=409, detail="companion is disabled")
        return {"entity_id": entity_id, "state": entry.state.value}

    @app.delete("/schedules/{entity_id}", dependencies=[Depends(verify_token)])
    async def stop_schedule(entity_id: str) -> dict[str, Any]:
        if not app.state.daemon.scheduler.stop_schedule(entity_id):
            raise HTTPException(status_code=404, detail="schedule not found")
        return {"entity_id": entity_id, "stopped": True}

    @app.get("/settings", dependencies=[Depends(verify_token)])
    async def get_settings() -> dict[str, Any]:
        return app.state.daemon.live.snapshot()

    @app.patch("/settings", dependencies=[Depends(verify_token)])
    async def patch_settings(body: SettingsPatch) -> dict[str, Any]:
        try:
            changed = app.state.daemon.live.update(
                enabled=body.enabled,
                frequency_minutes=body.frequency_minutes,
                city=body.city,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return {"changed": changed, **app.state.daemon.live.snapshot()}

    @app.get("/messages/recent", dependencies=[Depends(verify_token)])
    async def recent_messages(limit: int = 20, entity_id: str | None = None) -> list[dict[str, Any]]:
        return [m.to_dict() for m in app.state.daemon.egress.recent(limit=limit, entity_id=entity_id)]

    @app.get("/stats", dependencies=[Depends(verify_token)])
    async def stats() -> dict[str, Any]:
        daemon = app.state.daemon
        cache = daemon.weather_cache
        return {
            "history": daemon.validator.stats(),
            "weather": cache.stats() if cache is not None else None,
            "session": daemon.session.usage_stats(),
            "credentials": {"total": len(daemon.credentials), "cursor": daemon.credentials.cursor},
            "schedules": len(daemon.scheduler.active_schedules()),
        }

    return app
