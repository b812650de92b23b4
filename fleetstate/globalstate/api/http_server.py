"""
HTTP server implementation for the global state service.

Terminates the peer protocol on the owning node. Every node serves these
routes; a node that forwards to a remote owner simply forwards again, so the
routes work anywhere in the fleet.

    POST /api/v1/global-state/put        PutRequest      -> PutResponse
    POST /api/v1/global-state/get        GetRequest      -> GetResponse
    POST /api/v1/global-state/batch-get  BatchGetRequest -> BatchGetResponse
    POST /api/v1/global-state/delete     DeleteRequest   -> DeleteResponse
    POST /api/v1/global-state/seek       SeekRequest     -> SeekResponse
    GET  /api/v1/global-state/health

Invariants:
    - A body that does not decode is a 400 and never touches storage
    - A failing primitive is a 400 naming the operation and the cause
    - Handlers do not check the secret or body size; middleware and
      client_max_size do
    - JSON request/response format (see wire.py)

How to change safely:
    - Keep routes in sync with wire.Operation paths
    - Version the routes if breaking changes are needed
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Type, TypeVar

from aiohttp import web

from ..config import HttpConfig
from ..dispatch import GlobalState
from ..errors import GlobalStateError, MalformedRequestError
from ..wire import (
    ROUTE_PREFIX,
    SHARED_SECRET_PARAM,
    BatchGetRequest,
    BatchGetResponse,
    DeleteRequest,
    DeleteResponse,
    Envelope,
    GetRequest,
    GetResponse,
    Operation,
    PutRequest,
    PutResponse,
    SeekRequest,
    SeekResponse,
)

logger = logging.getLogger(__name__)

HEALTH_PATH = f"{ROUTE_PREFIX}/health"

Q = TypeVar("Q", bound=Envelope)


def create_http_app(
    global_state: GlobalState,
    config: HttpConfig | None = None,
    shared_secret: str = "",
) -> web.Application:
    """Create the HTTP application.

    Args:
        global_state: Dispatch layer the handlers call into
        config: HTTP server configuration
        shared_secret: Secret required in the shared_secret query parameter
            on every global state route; empty disables the check

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    def add_cors_headers(request: web.Request, headers: Any) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "Content-Type"

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                add_cors_headers(request, e.headers)
                raise

        add_cors_headers(request, response.headers)
        return response

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app = web.Application(
        middlewares=[
            error_middleware,
            cors_middleware,
            shared_secret_middleware(shared_secret),
        ],
        client_max_size=config.max_request_body_bytes,
    )

    # Add routes
    app.router.add_post(Operation.PUT.path, lambda r: handle_put(r, global_state))
    app.router.add_post(Operation.GET.path, lambda r: handle_get(r, global_state))
    app.router.add_post(Operation.BATCH_GET.path, lambda r: handle_batch_get(r, global_state))
    app.router.add_post(Operation.DELETE.path, lambda r: handle_delete(r, global_state))
    app.router.add_post(Operation.SEEK.path, lambda r: handle_seek(r, global_state))
    app.router.add_get(HEALTH_PATH, lambda r: handle_health(r, global_state))

    return app


def shared_secret_middleware(shared_secret: str) -> Callable:
    """Reject global state calls that don't carry the shared secret."""
    expected = shared_secret.encode("utf-8")

    @web.middleware
    async def middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if (
            expected
            and request.method != "OPTIONS"
            and request.path.startswith(ROUTE_PREFIX)
            and request.path != HEALTH_PATH
        ):
            provided = request.query.get(SHARED_SECRET_PARAM, "").encode("utf-8")
            if not hmac.compare_digest(provided, expected):
                logger.warning(
                    "Rejected global state request with bad shared secret",
                    extra={"path": request.path, "remote": request.remote},
                )
                return web.json_response(
                    {"error": f"Invalid {SHARED_SECRET_PARAM}"},
                    status=403,
                )
        return await handler(request)

    return middleware


def bad_request(message: str) -> web.Response:
    """Client error response with a descriptive message."""
    logger.info(message)
    return web.json_response({"error": message}, status=400)


async def _parse(request: web.Request, request_type: Type[Q]) -> Q:
    """Decode the request body into an envelope.

    Raises:
        MalformedRequestError: If the body is not a valid envelope
        web.HTTPRequestEntityTooLarge: If the body exceeds client_max_size
    """
    body = await request.read()
    return request_type.from_json(body)


def _respond(operation: Operation, envelope: Envelope) -> web.Response:
    try:
        body = envelope.to_json()
    except (TypeError, ValueError) as e:
        return bad_request(f"{operation.handler_name}: Problem encoding response as JSON: {e}")
    return web.Response(body=body, content_type="application/json")


async def _serve(
    request: web.Request,
    operation: Operation,
    request_type: Type[Q],
    call: Callable[[Q], Awaitable[Envelope]],
) -> web.Response:
    """Parse, dispatch and encode one primitive."""
    name = operation.handler_name
    try:
        envelope = await _parse(request, request_type)
    except MalformedRequestError as e:
        return bad_request(f"{name}: Problem parsing request body: {e.message}")

    try:
        result = await call(envelope)
    except GlobalStateError as e:
        return bad_request(f"{name}: Error processing {operation.value}: {e.message}")

    return _respond(operation, result)


async def handle_put(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle POST /api/v1/global-state/put."""

    async def call(req: PutRequest) -> PutResponse:
        await global_state.put(req.key, req.value)
        return PutResponse()

    return await _serve(request, Operation.PUT, PutRequest, call)


async def handle_get(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle POST /api/v1/global-state/get."""

    async def call(req: GetRequest) -> GetResponse:
        return GetResponse(value=await global_state.get(req.key))

    return await _serve(request, Operation.GET, GetRequest, call)


async def handle_batch_get(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle POST /api/v1/global-state/batch-get."""

    async def call(req: BatchGetRequest) -> BatchGetResponse:
        return BatchGetResponse(value_list=await global_state.batch_get(req.key_list))

    return await _serve(request, Operation.BATCH_GET, BatchGetRequest, call)


async def handle_delete(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle POST /api/v1/global-state/delete."""

    async def call(req: DeleteRequest) -> DeleteResponse:
        await global_state.delete(req.key)
        return DeleteResponse()

    return await _serve(request, Operation.DELETE, DeleteRequest, call)


async def handle_seek(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle POST /api/v1/global-state/seek."""

    async def call(req: SeekRequest) -> SeekResponse:
        keys, values = await global_state.seek(
            req.start_prefix,
            req.valid_for_prefix,
            req.max_key_len,
            req.num_to_fetch,
            req.reverse,
            req.fetch_values,
        )
        return SeekResponse(keys_found=keys, vals_found=values)

    return await _serve(request, Operation.SEEK, SeekRequest, call)


async def handle_health(request: web.Request, global_state: GlobalState) -> web.Response:
    """Handle GET /api/v1/global-state/health - Health check."""
    return web.json_response(
        {
            "healthy": True,
            "mode": "remote" if global_state.is_remote else "local",
        }
    )


async def run_http_server(
    app: web.Application,
    host: str = "0.0.0.0",
    port: int = 17001,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Run the HTTP server until shutdown_event is set or the task is cancelled.

    Args:
        app: Application from create_http_app()
        host: Host to bind to
        port: Port to listen on
        shutdown_event: Event that stops the server when set
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"HTTP server running on http://{host}:{port}")

    shutdown_event = shutdown_event or asyncio.Event()
    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
        logger.info("HTTP server stopped")
