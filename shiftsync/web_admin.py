from __future__ import annotations

import os
from typing import Any, NoReturn

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field

from shiftsync.config_manager import ConfigManager
from shiftsync.errors import (
    ConcurrentRunSkipped,
    FeedNotFound,
    FetchFailed,
    InvalidSourceUrl,
    ParseFailed,
    StorageFailed,
    SyncError,
)
from shiftsync.event_bus import EventBus
from shiftsync.feed_service import FeedService
from shiftsync.ics_export import build_calendar_ics
from shiftsync.run_guard import FeedRunGuard
from shiftsync.scheduler import SyncScheduler
from shiftsync.state_store import StateStore
from shiftsync.sync_engine import TRIGGER_MANUAL, SyncEngine


ERROR_STATUS = (
    (InvalidSourceUrl, 400),
    (FeedNotFound, 404),
    (ConcurrentRunSkipped, 409),
    (ParseFailed, 422),
    (FetchFailed, 502),
    (StorageFailed, 503),
)


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class FeedCreateRequest(BaseModel):
    calendar_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, max_length=2000)
    color: str | None = None
    interval_minutes: int | None = Field(default=None, ge=0)


class FeedUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    url: str | None = Field(default=None, max_length=2000)
    color: str | None = None
    interval_minutes: int | None = Field(default=None, ge=0)


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.state_store = StateStore(state_path, busy_timeout_seconds=config.storage.busy_timeout_seconds)
        self.event_bus = EventBus(queue_size=config.events.queue_size)
        self.run_guard = FeedRunGuard()
        self.sync_engine = SyncEngine(self.config_manager, self.state_store, self.event_bus, self.run_guard)
        self.feed_service = FeedService(self.config_manager, self.state_store, self.run_guard)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def _raise_http(exc: Exception) -> NoReturn:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise HTTPException(status_code=500, detail=str(exc) or "sync failed") from exc


def create_app() -> FastAPI:
    config_path = os.getenv("SHIFTSYNC_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("SHIFTSYNC_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="ShiftSync", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.load().to_dict()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        try:
            updated = app.state.context.config_manager.update(request.payload)
        except ValueError as exc:
            _raise_http(exc)
        return {"message": "config updated", "config": updated.to_dict()}

    @app.get("/api/feeds")
    def list_feeds(calendar_id: str | None = None) -> list[dict[str, Any]]:
        return [feed.to_dict() for feed in app.state.context.feed_service.list_feeds(calendar_id)]

    @app.post("/api/feeds", status_code=201)
    def create_feed(request: FeedCreateRequest) -> dict[str, Any]:
        try:
            feed = app.state.context.feed_service.create_feed(
                calendar_id=request.calendar_id,
                name=request.name,
                url=request.url,
                color=request.color,
                interval_minutes=request.interval_minutes,
            )
        except (SyncError, ValueError) as exc:
            _raise_http(exc)
        return feed.to_dict()

    @app.get("/api/feeds/{feed_id}")
    def get_feed(feed_id: str) -> dict[str, Any]:
        try:
            return app.state.context.feed_service.get_feed(feed_id).to_dict()
        except SyncError as exc:
            _raise_http(exc)

    @app.patch("/api/feeds/{feed_id}")
    def update_feed(feed_id: str, request: FeedUpdateRequest) -> dict[str, Any]:
        try:
            feed = app.state.context.feed_service.update_feed(feed_id, **request.model_dump(exclude_none=True))
        except (SyncError, ValueError) as exc:
            _raise_http(exc)
        return feed.to_dict()

    @app.delete("/api/feeds/{feed_id}")
    def delete_feed(feed_id: str) -> dict[str, Any]:
        try:
            app.state.context.feed_service.delete_feed(feed_id)
        except SyncError as exc:
            _raise_http(exc)
        return {"success": True}

    @app.post("/api/feeds/{feed_id}/sync")
    def run_feed_sync(feed_id: str) -> dict[str, Any]:
        try:
            stats = app.state.context.sync_engine.run_sync(feed_id, trigger=TRIGGER_MANUAL)
        except SyncError as exc:
            _raise_http(exc)
        return {"success": True, "stats": stats.to_dict()}

    @app.get("/api/sync-logs")
    def list_sync_logs(
        calendar_id: str | None = None,
        feed_id: str | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> dict[str, Any]:
        sync_log = app.state.context.sync_engine.sync_log
        entries = sync_log.entries(feed_id=feed_id, calendar_id=calendar_id, limit=limit)
        return {
            "logs": [entry.to_dict() for entry in entries],
            "has_unread_errors": sync_log.has_unread_errors(feed_id=feed_id, calendar_id=calendar_id),
        }

    @app.patch("/api/sync-logs/mark-errors-read")
    def mark_sync_errors_read(calendar_id: str | None = None, feed_id: str | None = None) -> dict[str, Any]:
        if not calendar_id and not feed_id:
            raise HTTPException(status_code=400, detail="calendar_id or feed_id is required")
        marked = app.state.context.sync_engine.sync_log.mark_errors_read(feed_id=feed_id, calendar_id=calendar_id)
        return {"success": True, "marked": marked}

    @app.delete("/api/sync-logs")
    def clear_sync_logs(calendar_id: str | None = None, feed_id: str | None = None) -> dict[str, Any]:
        if not calendar_id and not feed_id:
            raise HTTPException(status_code=400, detail="calendar_id or feed_id is required")
        deleted = app.state.context.sync_engine.sync_log.clear(feed_id=feed_id, calendar_id=calendar_id)
        return {"success": True, "deleted": deleted}

    @app.get("/api/calendars/{calendar_id}/shifts")
    def list_shifts(calendar_id: str) -> list[dict[str, Any]]:
        return [shift.to_dict() for shift in app.state.context.state_store.list_shifts(calendar_id)]

    @app.get("/api/calendars/{calendar_id}/export.ics")
    def export_calendar(calendar_id: str, name: str = "") -> Response:
        shifts = app.state.context.state_store.list_shifts(calendar_id)
        body = build_calendar_ics(shifts, calendar_name=name)
        return Response(
            content=body,
            media_type="text/calendar; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{calendar_id}.ics"'},
        )

    @app.get("/api/scheduler/status")
    def scheduler_status() -> dict[str, Any]:
        return {"feeds": app.state.context.scheduler.status()}

    return app
