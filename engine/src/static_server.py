"""
Static file server for static builds, with single-page-app fallback.

Usage:
    python -m engine.src.static_server <directory> <port>
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, PlainTextResponse

logger = logging.getLogger(__name__)

def resolve_file(root: Path, url_path: str) -> Optional[Path]:
    """Map a URL path to a file under root, or None if absent or outside it."""
    relative = url_path.lstrip("/") or "index.html"
    candidate = (root / relative).resolve()

    if candidate != root and root not in candidate.parents:
        return None
    if candidate.is_dir():
        candidate = candidate / "index.html"
    return candidate if candidate.is_file() else None

def wants_index_fallback(url_path: str) -> bool:
    """Client-side routes: extensionless paths outside /api."""
    if url_path == "/api" or url_path.startswith("/api/"):
        return False
    last_segment = url_path.rstrip("/").rsplit("/", 1)[-1]
    return "." not in last_segment

def create_static_app(directory: str) -> FastAPI:
    root = Path(directory).resolve()
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/{path:path}")
    async def serve(path: str, request: Request):
        url_path = request.url.path

        found = resolve_file(root, url_path)
        if found:
            return FileResponse(found)

        if wants_index_fallback(url_path):
            index = root / "index.html"
            if index.is_file():
                return FileResponse(index)

        return PlainTextResponse("Not Found", status_code=404)

    return app

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 2:
        print("Usage: python -m engine.src.static_server <directory> <port>", file=sys.stderr)
        sys.exit(1)

    directory, port = argv[0], int(argv[1])
    logging.basicConfig(level=logging.INFO)
    logger.info(f"Starting static server for {directory} on port {port}")
    uvicorn.run(create_static_app(directory), host="0.0.0.0", port=port)

if __name__ == "__main__":
    main()
