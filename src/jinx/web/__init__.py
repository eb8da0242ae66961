from __future__ import annotations

from importlib.metadata import version
from os import getenv
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape

from jinx.web.routers import api_router
from jinx.web.utils.files import list_exported_images
from jinx.web.workers.dream import queue_snapshot

app = FastAPI(
    title="Jinx Dream Queue",
    version=version("jinx"),
)

# Add middleware to compress responses larger than 500 bytes
app.add_middleware(GZipMiddleware, minimum_size=500)


# Set up Jinja2 template environment
templates_dir = Path(__file__).parent / "templates"
template_env = Environment(
    loader=FileSystemLoader(templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)
index_template = template_env.get_template("index.html")


@app.get("/", response_class=HTMLResponse)
async def index() -> HTMLResponse:
    """Render the landing page with the dream form, the queue and the results."""
    html = index_template.render(
        jobs=queue_snapshot(),
        exports=list_exported_images(),
    )
    return HTMLResponse(html)


app.include_router(
    api_router,
    prefix="/api",
)


def run(
    *,
    port: int | None = None,
    host: str | None = None,
    reload: bool = False,
) -> None:
    """
    Start the web server for the Jinx dream queue.

    Args:
        port: The port number to run the server on (keyword-only).
            Defaults to the PORT provided (if specified), environment variable if set, otherwise 2025.
        host: The host address to bind the server to (keyword-only).
            Defaults to '127.0.0.1' if not specified.
        reload: Enable auto-reload when code changes are detected (keyword-only).
            Defaults to False.

    Returns:
        None

    Example:
        >>> run()  # Runs on 127.0.0.1:2025
        >>> run(port=8000, host='0.0.0.0')  # Runs on 0.0.0.0:8000

    """
    env_port = getenv("PORT")
    if env_port and not port:
        port = int(env_port)
    if port is None:
        port = 2025

    if not host:
        host = "127.0.0.1"

    import uvicorn  # noqa: PLC0415

    uvicorn.run("jinx.web:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
