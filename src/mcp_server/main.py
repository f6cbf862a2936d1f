"""MCP Server entrypoint for the PostgreSQL SQL tools.

This module initializes the FastMCP server and registers all database tools
via the central registry.
"""

import logging
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastmcp import FastMCP
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from common.config.env import get_env_bool, get_env_int, get_env_str
from dal.database import ConnectionPoolManager
from mcp_server.tools.registry import register_all
from mcp_server.utils.context import set_manager

# Configure logging at the start
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

HTTP_TRANSPORT_PATHS = {
    "sse": "/messages",
    "streamable-http": "/mcp",
    "http": "/mcp",
}


def setup_telemetry() -> None:
    """Initialize OTEL SDK for the MCP server."""
    service_name = get_env_str("OTEL_SERVICE_NAME", "postgres-mcp")
    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    if get_env_bool("OTEL_DISABLE_EXPORTER", False):
        logger.info("OTEL initialized without exporter (OTEL_DISABLE_EXPORTER=true)")
        return

    endpoint = get_env_str("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    try:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        logger.info(f"OTEL initialized for MCP Server: {service_name}")
    except Exception as exc:
        logger.exception("Failed to initialize MCP OTEL exporter; continuing degraded: %s", exc)


@asynccontextmanager
async def lifespan(app):
    """Create the connection manager in the server's event loop.

    The default server, when one is configured, is connected at startup; a
    failure there is logged and the server still starts so that
    switch_server_db can be used.
    """
    manager = ConnectionPoolManager.from_env()
    set_manager(manager)
    manager.start()

    default_server = manager.default_server()
    if default_server:
        try:
            await manager.switch_server(default_server)
        except Exception as e:
            logger.error("Could not connect to default server '%s': %s", default_server, e)
    else:
        logger.info("No default server configured; use switch_server_db to connect")

    try:
        yield
    finally:
        await manager.close()
        set_manager(None)


# Initialize FastMCP Server with dependencies
mcp = FastMCP("postgres-mcp", lifespan=lifespan)

# Register all tools via the central registry
register_all(mcp)


def main() -> None:
    setup_telemetry()

    # Respect transport and host/port from environment for containerized use
    transport = get_env_str("MCP_TRANSPORT", "stdio").lower()
    host = get_env_str("MCP_HOST", "0.0.0.0")
    port = get_env_int("MCP_PORT", 8000)

    if transport == "stdio":
        mcp.run(transport="stdio")
        return

    if transport not in HTTP_TRANSPORT_PATHS:
        raise ValueError(
            f"Unsupported MCP_TRANSPORT: {transport}. "
            "Supported: stdio, sse, streamable-http (alias: http)"
        )
    if transport == "http":
        transport = "streamable-http"
    path = HTTP_TRANSPORT_PATHS[transport]
    print(
        f"Starting MCP server in {transport} mode on {host}:{port}{path}",
        file=sys.stderr,
        flush=True,
    )
    mcp.run(transport=transport, host=host, port=port, path=path)


if __name__ == "__main__":
    main()
