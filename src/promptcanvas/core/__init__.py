"""Storage core for PromptCanvas.

This package holds everything the HTTP layer needs to persist generation
history:

- **config.py**: ``PromptCanvasConfig`` (Pydantic Settings, ``PROMPTCANVAS_`` prefix)
- **identity.py**: credential -> pseudonymous user id
- **keys.py**: bucket key layout, MIME tables, data-URI decoding
- **object_store.py**: async adapter over a boto3 S3 client
- **input_store.py**: content-addressed reference image storage
- **history.py**: ``HistoryItem`` and the per-user ``HistoryLedger``
- **thumbnails.py**: Pillow thumbnail fallback

Usage Example
-------------
    from promptcanvas.core import (
        HistoryLedger, InputImageStore, ObjectStore, config, create_s3_client,
        derive_user_id,
    )

    store = ObjectStore(create_s3_client(config), config.r2_bucket_name)
    ledger = HistoryLedger(store, limit=config.history_limit)
    items = await ledger.load(derive_user_id(api_key))
"""

from promptcanvas.core.config import PromptCanvasConfig, config
from promptcanvas.core.history import HistoryItem, HistoryLedger
from promptcanvas.core.identity import derive_user_id
from promptcanvas.core.input_store import InputImageStore, StoredInputImage
from promptcanvas.core.object_store import (
    ObjectStore,
    StorageNotConfiguredError,
    StoreResult,
    StoreStatus,
    create_s3_client,
)

__all__ = [
    "HistoryItem",
    "HistoryLedger",
    "InputImageStore",
    "ObjectStore",
    "PromptCanvasConfig",
    "StorageNotConfiguredError",
    "StoreResult",
    "StoreStatus",
    "StoredInputImage",
    "config",
    "create_s3_client",
    "derive_user_id",
]
