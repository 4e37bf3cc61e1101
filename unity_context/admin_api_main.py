import logging

import uvicorn

from .admin_api import create_app
from .config import get_config, setup_logging
from .service import ContextService

logger = logging.getLogger("unity_context_admin_main")


def main() -> None:
    cfg = get_config()
    setup_logging(cfg.log_level, cfg.log_file)

    if not cfg.admin_enabled:
        logger.warning("Admin API is disabled in config (admin.enabled=false)")
        return

    host = cfg.admin_host
    port = cfg.admin_port

    service = ContextService.from_config(cfg)
    for name, path in cfg.projects.items():
        service.source.add_allowed_path(path)
        if cfg.watch_enabled:
            logger.info("Watching configured project %s", name)
            service.watcher.watch_project(path)

    logger.info("Starting Unity context admin API on %s:%s", host, port)
    logger.info("This API is intended for localhost-only access.")

    uvicorn.run(
        create_app(service),
        host=host,
        port=port,
        log_level=cfg.log_level.lower(),
    )


if __name__ == "__main__":
    main()
