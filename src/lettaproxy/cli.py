"""letta-proxy: run the CORS proxy in front of a Letta API server.

Usage:
    letta-proxy --api-server http://localhost:8283/v1
    letta-proxy --host 127.0.0.1 --port 9000
    LETTA_API_SERVER=http://letta.internal:8283/v1 letta-proxy
"""

import logging

import typer
import uvicorn

from .app import create_app
from .config import DEFAULT_HOST, DEFAULT_PORT, ProxyConfig, load_config
from .telemetry import configure_telemetry

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False)


def log_banner(config: ProxyConfig) -> None:
    """Tell the user where to point their Letta client."""
    logger.info("#################################################")
    if config.host == DEFAULT_HOST:
        logger.info(f"Point your Letta client to an available IP on this proxy host using port {config.port}.")
    else:
        logger.info(f"Point your Letta client to the proxy host http://{config.host}:{config.port}")


@app.command()
def serve(
    api_server: str = typer.Option(
        "", "--api-server", help="Letta API server URL (example: http://localhost:8283/v1)"
    ),
    host: str = typer.Option(DEFAULT_HOST, "--host", help="Proxy host to listen on."),
    port: int = typer.Option(DEFAULT_PORT, "--port", help="Proxy port to listen on."),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Upstream timeout in seconds (default: wait forever)."
    ),
):
    """Forward every request to the Letta API server, adding CORS headers."""
    config = load_config(
        api_server=api_server or None,
        host=host,
        port=port,
        upstream_timeout=timeout,
    )

    proxy_app = create_app(config)
    configure_telemetry(proxy_app)

    logger.info(f"Letta API server set to: {config.target_base}")
    log_banner(config)

    uvicorn.run(proxy_app, host=config.host, port=config.port, log_config=None)


def main():
    """Console script entry point."""
    app()
