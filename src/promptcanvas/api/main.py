"""PromptCanvas FastAPI application.

This module defines the application factory, the history and image proxy
routes, and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
The routes are a thin translation layer over the storage core:

- **Identity**: the ``x-api-key`` header (or ``default_api_key``) is hashed
  into a user id that namespaces every key the request touches.
- **History ledger**: one JSON document per user in the bucket, newest
  first, capped at ``history_limit`` items.
- **Blobs**: generated images, thumbnails, and deduplicated reference
  images live next to the ledger in the same bucket.

The storage client is built once per application by :func:`create_app`
and reached through ``app.state``; nothing in the request path touches a
module-level client.  When storage is not configured, no client is built
and every storage route answers 500 without network I/O.

Every response is JSON of the form ``{"success": bool, ...}``; errors carry
an ``error`` message.  The image proxy returns raw bytes on success.

Endpoints
---------
========  ========================  ==========================================
Method    Path                      Purpose
========  ========================  ==========================================
GET       ``/api/config``           Version and storage availability
GET       ``/api/history``          List the caller's history with image URLs
POST      ``/api/history``          Store a generation and record it
DELETE    ``/api/history?id=``      Delete a history item and its blobs
GET       ``/api/history/image``    Proxy a stored blob by key
========  ========================  ==========================================

Usage
-----
CLI (installed entry point)::

    promptcanvas

Direct invocation::

    python -m promptcanvas.api.main
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import quote

from fastapi import APIRouter, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from promptcanvas import __version__
from promptcanvas.api.models import CreateHistoryRequest
from promptcanvas.core.config import PromptCanvasConfig, config
from promptcanvas.core.history import (
    HistoryItem,
    HistoryLedger,
    new_item_id,
    normalize_mode,
    now_ms,
)
from promptcanvas.core.identity import derive_user_id
from promptcanvas.core.input_store import InputImageStore, InputImageStoreError
from promptcanvas.core.keys import (
    InvalidImageDataError,
    ParsedImage,
    content_type_for_key,
    image_key,
    parse_data_uri,
    thumbnail_key,
    thumbnail_key_for,
)
from promptcanvas.core.object_store import (
    ObjectStore,
    StorageNotConfiguredError,
    create_s3_client,
)
from promptcanvas.core.thumbnails import make_thumbnail

logger = logging.getLogger(__name__)

IMAGE_PROXY_PATH = "/api/history/image"
IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"
STORAGE_NOT_CONFIGURED = "Storage is not configured"


@dataclass
class StorageServices:
    """Storage collaborators shared by every request of one application."""

    store: ObjectStore
    ledger: HistoryLedger
    input_store: InputImageStore


def build_services(cfg: PromptCanvasConfig, s3_client=None) -> StorageServices | None:
    """Wire the object store, ledger, and input store for ``cfg``.

    Args:
        cfg: Application configuration.
        s3_client: Pre-built S3 client.  When omitted a boto3 client is
            created from ``cfg``.

    Returns:
        The wired services, or None when storage is not configured.
    """
    if not cfg.storage_configured:
        return None
    client = s3_client if s3_client is not None else create_s3_client(cfg)
    store = ObjectStore(client, cfg.r2_bucket_name)
    return StorageServices(
        store=store,
        ledger=HistoryLedger(store, limit=cfg.history_limit),
        input_store=InputImageStore(store),
    )


# ---------------------------------------------------------------------------
# Response helpers.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _services(request: Request) -> StorageServices:
    services: StorageServices | None = request.app.state.services
    if services is None:
        raise StorageNotConfiguredError(STORAGE_NOT_CONFIGURED)
    return services


def _config(request: Request) -> PromptCanvasConfig:
    return request.app.state.config


def image_url(cfg: PromptCanvasConfig, key: str) -> str:
    """Public URL for ``key``, or the proxy route when no public base is set."""
    if cfg.r2_public_url:
        return f"{cfg.r2_public_url}/{key}"
    return f"{IMAGE_PROXY_PATH}?key={quote(key, safe='')}"


def with_urls(cfg: PromptCanvasConfig, item: HistoryItem) -> dict:
    """Serialise ``item`` and add ``imageUrl``, ``thumbnailUrl``, ``inputImageUrls``."""
    document = item.to_document()
    document["imageUrl"] = image_url(cfg, item.image_key)
    document["thumbnailUrl"] = image_url(cfg, thumbnail_key_for(item.image_key))
    document["inputImageUrls"] = [image_url(cfg, key) for key in item.all_input_image_keys]
    return document


def _user_id(cfg: PromptCanvasConfig, api_key: str | None) -> str:
    credential = api_key or cfg.default_api_key
    return derive_user_id(credential)


async def _store_thumbnail(
    services: StorageServices,
    cfg: PromptCanvasConfig,
    req: CreateHistoryRequest,
    image: ParsedImage,
    user_id: str,
    item_id: str,
) -> None:
    """Upload the client thumbnail, or derive one; failures are only logged."""
    key = thumbnail_key(user_id, item_id)
    try:
        if req.thumbnail_data:
            data = parse_data_uri(req.thumbnail_data).data
        elif cfg.generate_thumbnails:
            data = await asyncio.to_thread(make_thumbnail, image.data, cfg.thumbnail_size)
        else:
            return
    except Exception as e:
        logger.warning(f"Thumbnail for {item_id} skipped: {e}")
        return

    if await services.store.put(key, data, "image/jpeg"):
        logger.info(f"Thumbnail stored: {key}")
    else:
        logger.warning(f"Thumbnail upload failed for {item_id}")


async def _store_reference_images(
    services: StorageServices,
    req: CreateHistoryRequest,
    user_id: str,
) -> tuple[list[str], list[str]]:
    """Store each reference image, skipping (and logging) any that fail."""
    keys: list[str] = []
    hashes: list[str] = []
    for payload in req.reference_images:
        try:
            stored = await services.input_store.store_input_image(
                payload, user_id, req.input_image_mime_type
            )
        except (InvalidImageDataError, InputImageStoreError) as e:
            logger.error(f"Reference image skipped for {user_id}: {e}")
            continue
        keys.append(stored.key)
        hashes.append(stored.hash)
    return keys, hashes


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/api/config")
async def get_config(request: Request) -> dict:
    """Return the API version and whether storage is available."""
    cfg = _config(request)
    return {
        "success": True,
        "version": __version__,
        "storage_configured": cfg.storage_configured,
        "public_url_configured": bool(cfg.r2_public_url),
        "history_limit": cfg.history_limit,
    }


@router.get("/api/history")
async def list_history(
    request: Request,
    mode: str | None = None,
    model: str | None = None,
    x_api_key: str | None = Header(default=None),
):
    """Return the caller's history, newest first, with image URLs.

    Args:
        request: Incoming request (gives access to app state).
        mode: Optional mode filter (long-form names are accepted).
        model: Optional model identifier filter.
        x_api_key: Credential that selects the user namespace.

    Returns:
        ``{"success": true, "history": [...]}`` or an error response.
    """
    cfg = _config(request)
    try:
        services = _services(request)
        user_id = _user_id(cfg, x_api_key)
        logger.info(f"GET history user={user_id} api_key_length={len(x_api_key or '')}")

        items = await services.ledger.load(user_id)
        if mode:
            wanted_mode = normalize_mode(mode)
            items = [item for item in items if item.mode == wanted_mode]
        if model:
            items = [item for item in items if item.model == model]

        logger.info(f"GET history user={user_id} items={len(items)}")
        return {"success": True, "history": [with_urls(cfg, item) for item in items]}
    except StorageNotConfiguredError:
        logger.error("GET history rejected: storage not configured")
        return _error(500, STORAGE_NOT_CONFIGURED)
    except Exception as e:
        logger.error(f"GET history failed: {e}", exc_info=True)
        return _error(500, "Failed to load history")


@router.post("/api/history")
async def create_history(
    request: Request,
    req: CreateHistoryRequest,
    x_api_key: str | None = Header(default=None),
):
    """Store a generated image and prepend it to the caller's history.

    This endpoint:

    1. Uploads the generated image to ``images/<user>/<id>.jpg``.
    2. Uploads the client thumbnail, or derives one (best-effort).
    3. For ``img2img``/``outpaint``, stores each reference image under its
       content hash, reusing existing objects.
    4. Prepends the new :class:`HistoryItem` to the ledger.

    Returns:
        ``{"success": true, "item": {...}}`` with image URLs, or a 400/500
        error response.
    """
    cfg = _config(request)
    try:
        services = _services(request)
        user_id = _user_id(cfg, x_api_key)
        logger.info(f"POST history user={user_id} mode={req.mode} model={req.model}")

        if not req.image_data or not req.prompt:
            return _error(400, "Missing required fields: imageData and prompt")

        try:
            image = parse_data_uri(req.image_data)
        except InvalidImageDataError as e:
            return _error(400, str(e))

        item_id = new_item_id()
        key = image_key(user_id, item_id)
        # Stored type follows the key so the proxy and the bucket agree.
        if not await services.store.put(key, image.data, content_type_for_key(key)):
            return _error(500, "Failed to store image")
        logger.info(f"Image stored: {key}")

        await _store_thumbnail(services, cfg, req, image, user_id, item_id)

        input_keys, input_hashes = await _store_reference_images(services, req, user_id)
        if input_keys:
            logger.info(f"Reference images stored: {len(input_keys)}")

        item = HistoryItem(
            id=item_id,
            timestamp=now_ms(),
            prompt=req.prompt,
            mode=req.mode,
            model=req.model or "unknown",
            image_key=key,
            aspect_ratio=req.aspect_ratio,
            input_image_key=input_keys[0] if input_keys else None,
            input_image_hash=input_hashes[0] if input_hashes else None,
            input_image_keys=input_keys or None,
            input_image_hashes=input_hashes or None,
        )

        if not await services.ledger.add_item(user_id, item):
            return _error(500, "Failed to save history")

        return {"success": True, "item": with_urls(cfg, item)}
    except StorageNotConfiguredError:
        logger.error("POST history rejected: storage not configured")
        return _error(500, STORAGE_NOT_CONFIGURED)
    except Exception as e:
        logger.error(f"POST history failed: {e}", exc_info=True)
        return _error(500, "Failed to save history")


@router.delete("/api/history")
async def delete_history(
    request: Request,
    item_id: str | None = Query(default=None, alias="id"),
    x_api_key: str | None = Header(default=None),
):
    """Delete one history item and its blobs.

    Returns:
        ``{"success": true}``; 400 when ``id`` is missing; 500 when the item
        does not exist or the ledger could not be saved.
    """
    cfg = _config(request)
    try:
        services = _services(request)
        user_id = _user_id(cfg, x_api_key)

        if not item_id:
            return _error(400, "Missing history item id")

        if not await services.ledger.delete_item(user_id, item_id):
            return _error(500, "Failed to delete history item")

        logger.info(f"DELETE history user={user_id} id={item_id}")
        return {"success": True}
    except StorageNotConfiguredError:
        return _error(500, STORAGE_NOT_CONFIGURED)
    except Exception as e:
        logger.error(f"DELETE history failed: {e}", exc_info=True)
        return _error(500, "Failed to delete history item")


@router.get(IMAGE_PROXY_PATH)
async def get_image(request: Request, key: str | None = None):
    """Stream a stored blob with a content type inferred from its extension.

    Returns:
        The raw bytes with a long-lived ``Cache-Control`` header; 400 when
        ``key`` is missing; 404 when the blob cannot be read.
    """
    try:
        services = _services(request)

        if not key:
            return _error(400, "Missing image key")

        data = await services.store.get(key)
        if data is None:
            return _error(404, "Image not found")

        return Response(
            content=data,
            media_type=content_type_for_key(key),
            headers={"Cache-Control": IMAGE_CACHE_CONTROL},
        )
    except StorageNotConfiguredError:
        return _error(500, STORAGE_NOT_CONFIGURED)
    except Exception as e:
        logger.error(f"GET image failed: {e}", exc_info=True)
        return _error(500, "Failed to load image")


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"Rejected invalid request to {request.url.path}: {exc.errors()}")
    return _error(400, "Invalid request body")


def create_app(cfg: PromptCanvasConfig | None = None, s3_client=None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        cfg: Configuration to use.  Defaults to the global ``config``.
        s3_client: S3 client to inject (tests pass an in-memory fake).

    Returns:
        A ready-to-serve FastAPI application.
    """
    cfg = cfg if cfg is not None else config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            logger.warning("Storage is not configured; history routes will return 500.")
        else:
            logger.info(f"History storage ready (bucket={cfg.r2_bucket_name}).")
        yield

    app = FastAPI(
        title="PromptCanvas",
        description="Image generation history with content-addressed object storage.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.services = build_services(cfg, s3_client)

    # The browser UI may be served from another origin during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port, and log level from :data:`~promptcanvas.core.config.config`
    (``PROMPTCANVAS_SERVER_HOST``, ``PROMPTCANVAS_SERVER_PORT``,
    ``PROMPTCANVAS_LOG_LEVEL``).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``promptcanvas`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "promptcanvas.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
