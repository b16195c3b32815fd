"""Backup API server implementation using Starlette."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from .storage import BackupStorage

if TYPE_CHECKING:
    from ..configuration import ConfigurationBundle

logger = logging.getLogger("garagesync.api.server")

DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024


class APIServerState(str, Enum):
    """API server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class BackupAPIServer:
    """HTTP endpoint that accepts and serves snapshot backups."""

    config_bundle: "ConfigurationBundle"

    _state: APIServerState = field(default=APIServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _storage: Optional[BackupStorage] = field(default=None, init=False)

    @property
    def state(self) -> APIServerState:
        return self._state

    @property
    def host(self) -> str:
        return self._get_api_config().get("host", "127.0.0.1")

    @property
    def port(self) -> int:
        return int(self._get_api_config().get("port", 8000))

    @property
    def max_body_bytes(self) -> int:
        return int(self._get_api_config().get("max_body_bytes", DEFAULT_MAX_BODY_BYTES))

    @property
    def storage(self) -> BackupStorage:
        if self._storage is None:
            raw = self._get_api_config().get("storage_dir", "state/backups")
            self._storage = BackupStorage(self.config_bundle.resolve_path(raw))
        return self._storage

    def _get_api_config(self) -> Dict[str, Any]:
        return self.config_bundle.section("api")

    def create_app(self) -> Any:
        """Create the Starlette application."""
        from starlette.applications import Starlette
        from starlette.middleware import Middleware
        from starlette.middleware.cors import CORSMiddleware
        from starlette.routing import Route

        from .routes import backup_download_handler, backup_upload_handler, health_handler

        middleware = []
        cors_origins = self._get_api_config().get("cors_origins", [])
        if cors_origins:
            middleware.append(
                Middleware(
                    CORSMiddleware,
                    allow_origins=cors_origins,
                    allow_methods=["GET", "POST", "OPTIONS"],
                    allow_headers=["Content-Type", "X-User-Id"],
                )
            )

        routes = [
            Route("/health", health_handler, methods=["GET"]),
            Route("/api/v1/backup", backup_upload_handler, methods=["POST"]),
            Route("/api/v1/backup", backup_download_handler, methods=["GET"]),
        ]

        app = Starlette(routes=routes, middleware=middleware)
        app.state.backup_server = self
        return app

    def serve(self) -> bool:
        """Run the server in the current thread until interrupted."""
        import uvicorn

        self._state = APIServerState.STARTING
        config = uvicorn.Config(
            self.create_app(),
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        logger.info(
            "Backup server listening on %s:%s (storage: %s)",
            self.host,
            self.port,
            self.storage.root,
        )
        self._state = APIServerState.RUNNING
        try:
            asyncio.run(self._server.serve())
        except Exception as e:
            logger.exception("Backup server error: %s", e)
            self._state = APIServerState.ERROR
            return False
        finally:
            self._server = None
        self._state = APIServerState.STOPPED
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "host": self.host,
            "port": self.port,
            "storage": str(self.storage.root),
        }


__all__ = ["BackupAPIServer", "APIServerState"]
