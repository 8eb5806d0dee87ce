"""FastAPI application serving the authoritative task board."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..backend.file_repo import BoardRepository, FileBoardRepository
from ..constants import STATE_DIR_NAME
from .task_api import create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    *,
    repository: Optional[BoardRepository] = None,
    data_dir: Optional[Path] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        project_dir: Project directory; tasks are stored in its ``.board_sync/``.
        enable_cors: Whether to enable CORS.
        repository: Use this repository instead of a file-backed one.
        data_dir: Override the storage directory.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Board Sync",
        description="Authoritative task store for the board sync engine",
        version=__version__,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if repository is None:
        root = Path(project_dir) if project_dir else Path.cwd()
        repository = FileBoardRepository(Path(data_dir) if data_dir else root / STATE_DIR_NAME)
    app.state.repository = repository

    def _get_repository() -> BoardRepository:
        return app.state.repository

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(create_task_router(_get_repository))
    return app
