# /guidesync.py
# GuideSync - keeps *arr custom formats and quality profiles in line with the TRaSH Guides catalog
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from api import register as register_api
from gs_platform._logging import configure as configure_logging, log as _root_log
from gs_platform.config_base import CONFIG_BASE, config_path, load_config
from gs_platform.engine import Engine
from services.scheduling import AutoSyncScheduler

log = _root_log.child("app")


def create_app(cfg: dict[str, Any] | None = None, *, engine: Engine | None = None, autostart: bool = True) -> FastAPI:
    cfg = cfg if cfg is not None else load_config()
    configure_logging(cfg)
    engine = engine or Engine(cfg)
    scheduler = AutoSyncScheduler(engine, load_config)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        app.state.engine = engine
        app.state.scheduler = scheduler
        if autostart:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()

    app = FastAPI(title="GuideSync", lifespan=_lifespan)
    register_api(app, engine)

    @app.get("/api/scheduler/status")
    def api_scheduler_status() -> dict[str, Any]:
        return scheduler.status()

    @app.post("/api/scheduler/run")
    def api_scheduler_run() -> dict[str, Any]:
        return scheduler.run_once()

    return app


# Entry point
def main(host: str = "0.0.0.0", port: int = 8788) -> None:
    cfg = load_config()
    print("\nGuideSync running:")
    print(f"  Local:   http://127.0.0.1:{port}")
    print(f"  Bind:    {host}:{port}")
    print(f"  Config:  {config_path()} (JSON)")
    print(f"  Data:    {CONFIG_BASE()}\n")

    debug = bool((cfg.get("runtime") or {}).get("debug"))
    uvicorn.run(
        create_app(cfg),
        host=host,
        port=port,
        log_level=("debug" if debug else "warning"),
    )


if __name__ == "__main__":
    main()
