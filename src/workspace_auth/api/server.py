"""Runs the callback app with uvicorn as a task on the current event loop.

The correlator's futures belong to the loop that created them, so the server
must not get a loop (or thread) of its own.  The listening socket is bound
here rather than by uvicorn, which exits the process on a bind failure.
"""

from __future__ import annotations

import asyncio
import logging
import socket

import uvicorn
from fastapi import FastAPI

from workspace_auth.errors import ConfigError

logger = logging.getLogger(__name__)

_STARTUP_POLL_SECONDS = 0.05


class CallbackServer:
    def __init__(self, app: FastAPI, *, host: str, port: int) -> None:
        self._host = host
        self._port = port
        config = uvicorn.Config(app, host=host, port=port, log_level="warning", log_config=None)
        self._server = uvicorn.Server(config)
        self._socket: socket.socket | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def started(self) -> bool:
        return self._server.started

    async def start(self) -> None:
        """Start serving and wait until the server accepts connections.

        Raises
        ------
        ConfigError
            If the callback port cannot be bound (e.g. already in use).
        RuntimeError
            If uvicorn exits before it finished starting.
        """
        if self._task is not None:
            logger.warning("Callback server already running on port %d", self._port)
            return
        self._socket = self._bind_socket()
        self._task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        while not self._server.started:
            if self._task.done():
                self._task = None
                self._close_socket()
                raise RuntimeError(f"Callback server failed to start on port {self._port}")
            await asyncio.sleep(_STARTUP_POLL_SECONDS)
        logger.info("Callback server listening on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._close_socket()
        logger.info("Callback server stopped")

    async def serve_forever(self) -> None:
        """Wait for the server task to finish (e.g. on SIGINT)."""
        if self._task is not None:
            await self._task

    def _bind_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
        except OSError as exc:
            sock.close()
            raise ConfigError(
                f"Cannot bind OAuth callback server to {self._host}:{self._port}: {exc}",
                code="CALLBACK_PORT_UNAVAILABLE",
                resolution="Set OAUTH_SERVER_PORT to a free port or stop the process using it.",
            ) from exc
        sock.set_inheritable(True)
        return sock

    def _close_socket(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()
