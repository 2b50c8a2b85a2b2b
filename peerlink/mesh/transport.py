"""TCP request/response messaging between peers.

Each node runs a TCP server on its own ``address:port``.  To talk to a
peer, the sender opens a short-lived connection, writes one length-prefixed
request, reads one response and closes the connection.  Requests are routed
to handlers by path, much like HTTP routes.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from peerlink.mesh.address import NodeIdentity
from peerlink.mesh.errors import (
    ConnectionFailedError,
    MalformedResponseError,
    NonSuccessStatusError,
    PathNotFoundError,
    SendTimeoutError,
    as_bind_error,
)
from peerlink.mesh.peers import PeerDescriptor
from peerlink.mesh.protocol import (
    MeshRequest,
    MeshResponse,
    Status,
    encode_message,
    normalize_path,
    read_message,
)

DEFAULT_SEND_TIMEOUT = 5.0
REQUEST_READ_TIMEOUT = 10.0


@dataclass(frozen=True)
class RequestContext:
    """What a handler knows about the request besides its payload."""

    node: NodeIdentity      # the node serving the request
    source: str             # id the requester announced itself as
    path: str
    remote_address: str = ""


Payload = dict[str, Any]
HandlerResult = Union[Mapping[str, Any], None, Awaitable[Union[Mapping[str, Any], None]]]
RequestHandler = Callable[[Payload, RequestContext], HandlerResult]


class Messenger:
    """Serves registered handlers and sends requests to peers.

    Parameters
    ----------
    identity:
        This node's identity; the server listens on ``identity.port``.
    host:
        Interface to bind the TCP server on (default ``"0.0.0.0"``).
    send_timeout:
        Default deadline in seconds for a whole ``send`` exchange.
    """

    def __init__(
        self,
        identity: NodeIdentity,
        host: str = "0.0.0.0",
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.identity = identity
        self.host = host
        self.send_timeout = send_timeout
        self._handlers: dict[str, RequestHandler] = {}
        self._server: asyncio.Server | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- handler registration ------------------------------------------------

    def register_handler(self, path: str, handler: RequestHandler) -> None:
        """Route requests for *path* to *handler*.

        Registering a path twice replaces the earlier handler; the last
        registration wins.  Coroutine handlers are awaited on the loop;
        plain functions run in a worker thread, so they may block or call
        ``send_blocking``.
        """
        path = normalize_path(path)
        if path in self._handlers:
            logger.debug(f"[Mesh/Transport] replacing handler for {path}")
        self._handlers[path] = handler

    def route(self, path: str) -> Callable[[RequestHandler], RequestHandler]:
        """Decorator form of :meth:`register_handler`."""

        def _decorator(handler: RequestHandler) -> RequestHandler:
            self.register_handler(path, handler)
            return handler

        return _decorator

    def unregister_handler(self, path: str) -> bool:
        return self._handlers.pop(normalize_path(path), None) is not None

    @property
    def paths(self) -> list[str]:
        return sorted(self._handlers)

    # -- lifecycle -----------------------------------------------------------

    @property
    def serving(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int | None:
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start the TCP server.

        Raises ``AddressInUseError`` if the port is taken and ``BindError``
        for any other bind failure.
        """
        if self._server is not None:
            return
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self.identity.port,
            )
        except OSError as exc:
            raise as_bind_error(exc, f"tcp {self.host}:{self.identity.port}") from exc
        self._loop = asyncio.get_running_loop()
        logger.info(
            f"[Mesh/Transport] listening on {self.host}:{self.identity.port} "
            f"as node={self.identity.id}"
        )

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info(f"[Mesh/Transport] stopped: node={self.identity.id}")
        self._loop = None

    # -- serving -------------------------------------------------------------

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one inbound connection (one request, one response)."""
        peername = writer.get_extra_info("peername")
        remote = peername[0] if peername else ""
        try:
            obj = await asyncio.wait_for(read_message(reader), timeout=REQUEST_READ_TIMEOUT)
            response = await self._dispatch(obj, remote)
            try:
                data = encode_message(response.to_dict())
            except (TypeError, ValueError) as exc:
                logger.error(f"[Mesh/Transport] unserialisable response: {exc}")
                data = encode_message(
                    MeshResponse.failure(Status.HANDLER_ERROR, f"response not serialisable: {exc}").to_dict()
                )
            writer.write(data)
            await writer.drain()
        except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError) as exc:
            logger.debug(f"[Mesh/Transport] connection error from {remote}: {exc!r}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _dispatch(self, obj: dict[str, Any] | None, remote: str) -> MeshResponse:
        if obj is None:
            return MeshResponse.failure(Status.BAD_REQUEST, "malformed request")
        try:
            request = MeshRequest.from_dict(obj)
            path = normalize_path(request.path)
        except ValueError as exc:
            return MeshResponse.failure(Status.BAD_REQUEST, str(exc))

        handler = self._handlers.get(path)
        if handler is None:
            logger.debug(f"[Mesh/Transport] no handler for {path} (from {request.source or remote})")
            return MeshResponse.failure(Status.NOT_FOUND, f"no handler for {path}")

        ctx = RequestContext(
            node=self.identity,
            source=request.source,
            path=path,
            remote_address=remote,
        )
        try:
            if inspect.iscoroutinefunction(handler):
                result = await handler(request.payload, ctx)
            else:
                # Plain functions run off the loop so a blocking handler cannot
                # stall discovery or other connections.
                result = await asyncio.to_thread(handler, request.payload, ctx)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as exc:
            logger.error(f"[Mesh/Transport] handler error on {path}: {exc!r}")
            return MeshResponse.failure(Status.HANDLER_ERROR, str(exc) or type(exc).__name__)

        if result is None:
            result = {}
        if not isinstance(result, Mapping):
            logger.error(f"[Mesh/Transport] handler for {path} returned {type(result).__name__}")
            return MeshResponse.failure(Status.HANDLER_ERROR, "handler did not return a mapping")
        logger.debug(f"[Mesh/Transport] served {path} for {request.source or remote}")
        return MeshResponse(status=Status.OK, payload=dict(result))

    # -- sending -------------------------------------------------------------

    async def send(
        self,
        peer: PeerDescriptor,
        path: str,
        payload: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Payload:
        """Send one request to *peer* and return the response payload.

        The whole exchange (connect, write, read) must finish within
        *timeout* seconds (default ``send_timeout``).

        Raises ``ConnectionFailedError`` (``SendTimeoutError`` on deadline),
        ``NonSuccessStatusError`` (``PathNotFoundError`` for 404) or
        ``MalformedResponseError``.
        """
        path = normalize_path(path)
        timeout = self.send_timeout if timeout is None else timeout
        request = MeshRequest(path=path, source=self.identity.id, payload=dict(payload or {}))
        data = encode_message(request.to_dict())

        try:
            response = await asyncio.wait_for(self._exchange(peer, data), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                f"[Mesh/Transport] {path} to {peer.id} timed out after {timeout:.1f}s"
            )
            raise SendTimeoutError(f"no response from {peer.id} within {timeout:.1f}s") from exc

        if response.status == Status.NOT_FOUND:
            raise PathNotFoundError(response.status, response.error)
        if not response.ok:
            raise NonSuccessStatusError(response.status, response.error)
        return response.payload

    async def _exchange(self, peer: PeerDescriptor, data: bytes) -> MeshResponse:
        try:
            reader, writer = await asyncio.open_connection(peer.address, peer.port)
        except OSError as exc:
            logger.warning(
                f"[Mesh/Transport] failed to connect to {peer.id} "
                f"@ {peer.address}:{peer.port}: {exc}"
            )
            raise ConnectionFailedError(f"cannot connect to {peer.id}: {exc}") from exc

        try:
            writer.write(data)
            await writer.drain()
            obj = await read_message(reader)
        except (asyncio.IncompleteReadError, OSError) as exc:
            raise ConnectionFailedError(f"connection to {peer.id} lost: {exc!r}") from exc
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        if obj is None:
            raise MalformedResponseError(f"undecodable response from {peer.id}")
        try:
            return MeshResponse.from_dict(obj)
        except ValueError as exc:
            raise MalformedResponseError(f"bad response from {peer.id}: {exc}") from exc

    def send_blocking(
        self,
        peer: PeerDescriptor,
        path: str,
        payload: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Payload:
        """Thread-side twin of :meth:`send`.

        Runs the exchange on the messenger's event loop and blocks the
        calling thread for the result.  Must not be called from the loop's
        own thread.
        """
        loop = self._loop
        if loop is None or not loop.is_running():
            raise RuntimeError("messenger is not running")
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is loop:
            raise RuntimeError("send_blocking() called on the event loop thread; await send() instead")
        future = asyncio.run_coroutine_threadsafe(
            self.send(peer, path, payload, timeout=timeout), loop
        )
        return future.result()
