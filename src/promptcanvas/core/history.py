"""Per-user generation history stored as one JSON document per user.

The ledger for a user is a JSON array at ``history/<user_id>/history.json``
holding :class:`HistoryItem` objects newest first.  It is capped at
``limit`` entries (100 by default); anything pushed past the cap by a new
item is gone for good.

Every mutation is a read-modify-write of the whole document with no
version check.  Two concurrent writers for the same user race and the
later ``save`` wins, discarding the earlier writer's change.  There is no
locking here; callers that need stronger guarantees must add it.

Writes never start from a read that failed: if the document cannot be
fetched, ``add_item`` and ``delete_item`` return False and leave it alone.
Entries written by other clients that do not validate (an unknown mode,
say) are hidden from ``load`` but written back untouched.

Blob ownership
--------------
- ``imageKey`` (and its ``_thumb`` sibling) belongs to exactly one item and
  is deleted with it.
- ``inputImageKey`` may be shared by many items.  Deleting an item removes
  that blob only when no remaining item in the same ledger still points at
  it, determined by scanning the list at delete time.

Only the legacy single ``inputImageKey`` takes part in that cleanup.
Additional keys in ``inputImageKeys`` are left in place.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from promptcanvas.core.keys import history_key, thumbnail_key_for
from promptcanvas.core.object_store import ObjectStore, StoreStatus

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100

GenerationMode = Literal["text2img", "img2img", "outpaint"]

MODE_ALIASES = {
    "text-to-image": "text2img",
    "image-to-image": "img2img",
}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def normalize_mode(value: str | None) -> str:
    """Map long-form mode names to their stored form; None becomes text2img."""
    if not value:
        return "text2img"
    return MODE_ALIASES.get(value, value)


def new_item_id() -> str:
    """Return ``<epoch-ms>_<7 random base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"{now_ms()}_{suffix}"


def now_ms() -> int:
    return int(time.time() * 1000)


class HistoryItem(BaseModel):
    """One generated image and the assets it references.

    Attributes:
        id: Unique identifier within the user's ledger.
        timestamp: Creation time in epoch milliseconds.
        prompt: Prompt used for the generation.
        mode: ``text2img``, ``img2img`` or ``outpaint``.
        model: Identifier of the generation model.
        image_key: Key of the generated image, owned by this item.
        aspect_ratio: Optional aspect ratio label.
        input_image_key: First reference image key (legacy single form).
        input_image_hash: Content hash of ``input_image_key``.
        input_image_keys: All reference image keys, in upload order.
        input_image_hashes: Content hashes matching ``input_image_keys``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    id: str
    timestamp: int
    prompt: str
    mode: GenerationMode = "text2img"
    model: str = "unknown"
    image_key: str
    aspect_ratio: str | None = None
    input_image_key: str | None = None
    input_image_hash: str | None = None
    input_image_keys: list[str] | None = None
    input_image_hashes: list[str] | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value):
        return normalize_mode(value)

    @property
    def all_input_image_keys(self) -> list[str]:
        """Reference keys in the multi-image form, falling back to the legacy field."""
        if self.input_image_keys:
            return list(self.input_image_keys)
        return [self.input_image_key] if self.input_image_key else []

    def to_document(self) -> dict:
        """Serialise with camelCase keys, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


def _entry_id(entry) -> str | None:
    if isinstance(entry, HistoryItem):
        return entry.id
    if isinstance(entry, dict):
        return entry.get("id")
    return None


def _entry_input_image_key(entry) -> str | None:
    if isinstance(entry, HistoryItem):
        return entry.input_image_key
    if isinstance(entry, dict):
        return entry.get("inputImageKey")
    return None


class HistoryLedger:
    """Load, append to, and delete from per-user history documents.

    Stored entries that do not validate as :class:`HistoryItem` are hidden
    from :meth:`load` but carried through every write unchanged.

    Args:
        store: Object store holding both the ledger documents and the blobs
            the items reference.
        limit: Maximum number of items kept per user.
    """

    def __init__(self, store: ObjectStore, limit: int = DEFAULT_HISTORY_LIMIT):
        self.store = store
        self.limit = limit

    async def _read(self, user_id: str) -> list | None:
        """Return every stored entry, or None if the backend could not be read.

        Entries that validate come back as :class:`HistoryItem`; the rest
        are returned as the raw JSON values found in the document.
        """
        result = await self.store.fetch(history_key(user_id))
        if result.status is StoreStatus.MISSING:
            return []
        if result.status is StoreStatus.ERROR:
            logger.warning(f"History for {user_id} unreadable: {result.error}")
            return None

        try:
            raw_entries = json.loads(result.data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"History document for {user_id} is not valid JSON: {e}")
            return []

        if not isinstance(raw_entries, list):
            logger.warning(f"History document for {user_id} is not a list, ignoring it")
            return []

        entries = []
        for entry in raw_entries:
            try:
                entries.append(HistoryItem.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Keeping unrecognised history entry for {user_id} as-is: {e}")
                entries.append(entry)
        return entries

    async def load(self, user_id: str) -> list[HistoryItem]:
        """Return the user's items newest first.

        Never raises: a missing document, a backend failure, or a corrupt
        document all yield an empty list.  Individual entries that fail
        validation are skipped.
        """
        entries = await self._read(user_id)
        if entries is None:
            return []
        return [entry for entry in entries if isinstance(entry, HistoryItem)]

    async def save(self, user_id: str, items: list) -> bool:
        """Overwrite the user's document with ``items`` (last writer wins).

        Raw entries kept from a previous read are written back unchanged.
        """
        document = json.dumps(
            [item.to_document() if isinstance(item, HistoryItem) else item for item in items],
            indent=2,
            ensure_ascii=False,
        )
        return await self.store.put(
            history_key(user_id),
            document.encode("utf-8"),
            "application/json",
        )

    async def add_item(self, user_id: str, item: HistoryItem) -> bool:
        """Prepend ``item`` and truncate the ledger to ``limit`` entries.

        Returns False without writing if the current document cannot be
        read or an item with the same id is already present.
        """
        entries = await self._read(user_id)
        if entries is None:
            logger.error(f"Not adding {item.id}: history for {user_id} could not be read")
            return False
        if any(_entry_id(existing) == item.id for existing in entries):
            logger.warning(f"History item {item.id} already exists for {user_id}")
            return False

        entries.insert(0, item)
        return await self.save(user_id, entries[: self.limit])

    async def delete_item(self, user_id: str, item_id: str) -> bool:
        """Remove an item and clean up the blobs it owns.

        The generated image and its thumbnail are always deleted.  The legacy
        reference image is deleted only when no other entry still references
        the same key.  Blob deletions are best-effort and sequential; their
        failures are logged and never stop the ledger update.

        Returns:
            False if the document cannot be read, no item has ``item_id``,
            or the ledger could not be saved.  True otherwise.
        """
        entries = await self._read(user_id)
        if entries is None:
            logger.error(f"Not deleting {item_id}: history for {user_id} could not be read")
            return False
        item = next(
            (e for e in entries if isinstance(e, HistoryItem) and e.id == item_id),
            None,
        )
        if item is None:
            return False

        for key in (item.image_key, thumbnail_key_for(item.image_key)):
            if not await self.store.delete(key):
                logger.warning(f"Could not delete {key} for history item {item_id}")

        remaining = [e for e in entries if _entry_id(e) != item_id]
        if item.input_image_key:
            still_referenced = any(
                _entry_input_image_key(e) == item.input_image_key for e in remaining
            )
            if still_referenced:
                logger.info(f"Keeping shared reference image {item.input_image_key}")
            elif not await self.store.delete(item.input_image_key):
                logger.warning(f"Could not delete reference image {item.input_image_key}")

        return await self.save(user_id, remaining)
