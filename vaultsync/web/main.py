from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from vaultsync import __version__
from vaultsync.core.config import load_config
from vaultsync.core.scheduler import SyncScheduler
from vaultsync.core.service import run_sync_once_and_record
from vaultsync.web.api import router as api_router
from vaultsync.web.security import NetworkAllowlistMiddleware, get_allowed_nets


def _configured_interval_sec() -> int:
    return load_config().sync.auto_sync_interval_sec()


def build_scheduler() -> SyncScheduler:
    return SyncScheduler(run_sync_once_and_record, _configured_interval_sec)


def build_app(scheduler: SyncScheduler | None = None) -> FastAPI:
    cfg = load_config()
    scheduler = scheduler or build_scheduler()

    @asynccontextmanager
    async def lifespan(_api: FastAPI):
        scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    api = FastAPI(title="vaultsync", version=__version__, lifespan=lifespan)
    api.state.scheduler = scheduler
    api.add_middleware(NetworkAllowlistMiddleware, allowed_nets=get_allowed_nets(cfg.web_allowed_nets))
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    from vaultsync.core.logging_setup import setup_logging

    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
