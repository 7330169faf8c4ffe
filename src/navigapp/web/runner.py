"""Uvicorn server runner."""

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from navigapp.app import App
from navigapp.config import Config
from navigapp.web.server import create_fastapi_app


def run_server(app: App, config: Config) -> None:
    """Run the API (and the polling bot when enabled) under Uvicorn."""
    fastapi_app = create_fastapi_app(app, config)

    log_config = LOGGING_CONFIG.copy()
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s - %(client_addr)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s - %(levelname)s - %(message)s"

    # Client IPs are read from X-Forwarded-For; trust it only behind the deployment proxy
    uvicorn.run(
        fastapi_app,
        host=config.host,
        port=config.port,
        log_config=log_config,
        access_log=True,
        proxy_headers=config.environment != "local",
        forwarded_allow_ips="*" if config.environment != "local" else None,
    )
