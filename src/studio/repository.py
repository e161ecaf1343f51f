"""Shared plumbing for the per-vertical repositories.

Every record family lives as one JSON array under one key. Repositories read
the whole array, compute a new one and write it back; nothing is cached
between calls.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError

from .models import StoredModel
from .storage import KeyValueStore, WriteStatus

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=StoredModel)

DEFAULT_PREFIX = "song-builder:"


@dataclass(frozen=True)
class ExportField:
    """One field of a vertical's export document."""

    key: str
    is_list: bool = True


class Repository:
    """Base class binding a vertical's keys to a store."""

    # Export field name -> storage key suffix and shape.
    EXPORT_FIELDS: dict[str, ExportField] = {}
    # Extra keys under this suffix are removed by reset().
    RESET_PREFIX: str | None = None

    def __init__(self, store: KeyValueStore, prefix: str = DEFAULT_PREFIX) -> None:
        self.store = store
        self.prefix = prefix

    def key(self, suffix: str) -> str:
        return f"{self.prefix}{suffix}"

    def _read_array(self, suffix: str, model: type[RecordT]) -> tuple[list[RecordT], list[Any]]:
        """Split the stored array into valid records and the raw items that failed."""
        key = self.key(suffix)
        raw = self.store.read(key)
        if raw is None:
            return [], []
        if not isinstance(raw, list):
            logger.warning("Ignoring %s: expected a JSON array", key)
            return [], []
        records: list[RecordT] = []
        unreadable: list[Any] = []
        for position, item in enumerate(raw):
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping record %d of %s: %s", position, key, e)
                unreadable.append(item)
        return records, unreadable

    def _load(self, suffix: str, model: type[RecordT]) -> list[RecordT]:
        return self._read_array(suffix, model)[0]

    def _save(
        self,
        suffix: str,
        records: Sequence[RecordT],
        model: type[RecordT],
    ) -> WriteStatus:
        """Write ``records`` back, carrying along stored items ``model`` cannot read."""
        _, unreadable = self._read_array(suffix, model)
        return self.store.write(
            self.key(suffix),
            [*(r.to_json() for r in records), *unreadable],
        )

    def _load_object(self, suffix: str, model: type[RecordT]) -> RecordT | None:
        key = self.key(suffix)
        raw = self.store.read(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring %s: stored value is invalid (%s)", key, e)
            return None

    def _save_object(self, suffix: str, value: StoredModel) -> WriteStatus:
        return self.store.write(self.key(suffix), value.to_json())

    # ─── Import / Export ─────────────────────────────────────────────────────

    def export_data(self) -> dict[str, Any]:
        """Return every family of this vertical as a JSON-ready document."""
        document: dict[str, Any] = {}
        for name, field in self.EXPORT_FIELDS.items():
            raw = self.store.read(self.key(field.key))
            if field.is_list:
                document[name] = raw if isinstance(raw, list) else []
            else:
                document[name] = raw
        return document

    def import_data(self, data: dict[str, Any]) -> list[str]:
        """Write each well-shaped field of ``data`` verbatim.

        Lists must be JSON arrays and objects must be non-null; anything else
        is skipped and the stored value for that family is left untouched.

        Returns:
            list[str]: Names of the fields that were written.

        """
        imported = []
        for name, field in self.EXPORT_FIELDS.items():
            value = data.get(name)
            if field.is_list and not isinstance(value, list):
                continue
            if not field.is_list and value is None:
                continue
            if self.store.write(self.key(field.key), value) is WriteStatus.OK:
                imported.append(name)
        logger.info("Imported %s", ", ".join(imported) or "nothing")
        return imported

    def reset(self) -> None:
        """Remove every key owned by this vertical."""
        owned = {self.key(field.key) for field in self.EXPORT_FIELDS.values()}
        if self.RESET_PREFIX is not None:
            prefix = self.key(self.RESET_PREFIX)
            owned.update(k for k in self.store.keys() if k.startswith(prefix))
        for key in owned:
            self.store.remove(key)
        logger.info("Removed %d keys", len(owned))
