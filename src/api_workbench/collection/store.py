"""Collection store: ordered execution history plus saved requests.

History only grows through ``append``/``record`` and only shrinks through
``remove``; nothing is evicted behind the user's back. Every mutation and
snapshot happens under one lock so concurrent executions append in
completion order.
"""

from __future__ import annotations

import json
import threading

from pydantic import ValidationError

from api_workbench.collection.models import (
    COLLECTION_FORMAT,
    COLLECTION_VERSION,
    CollectionFile,
    HistoryEntry,
    SavedRequest,
)
from api_workbench.errors import (
    CollectionExportError,
    CollectionImportError,
    ImportReason,
    SavedRequestNotFound,
)
from api_workbench.execution.models import ExecutionResult
from api_workbench.log import get_logger
from api_workbench.request.models import RequestDescriptor

logger = get_logger(__name__)


class CollectionStore:
    def __init__(
        self,
        history: list[HistoryEntry] | None = None,
        saved_requests: list[SavedRequest] | None = None,
    ):
        self._lock = threading.Lock()
        self._history: list[HistoryEntry] = list(history or [])
        self._saved: dict[str, SavedRequest] = {}
        for saved in saved_requests or []:
            self._saved[saved.name] = saved.model_copy(deep=True)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CollectionStore):
            return NotImplemented
        return self.list() == other.list() and self.list_requests() == other.list_requests()

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    # --- history ----------------------------------------------------------

    def append(self, entry: HistoryEntry) -> None:
        with self._lock:
            self._history.append(entry)
            position = len(self._history) - 1
        logger.debug(
            "history_appended",
            index=position,
            method=entry.request.method,
            url=entry.request.url,
            outcome=entry.result.outcome,
        )

    def record(
        self,
        request: RequestDescriptor,
        result: ExecutionResult,
        label: str | None = None,
    ) -> HistoryEntry:
        """Wrap an execution in a HistoryEntry and append it."""
        entry = HistoryEntry(request=request, result=result, label=label)
        self.append(entry)
        return entry

    def list(self) -> list[HistoryEntry]:
        """Snapshot of the history, most recent last."""
        with self._lock:
            return list(self._history)

    def get(self, index: int) -> HistoryEntry:
        with self._lock:
            return self._history[index]

    def remove(self, index: int) -> HistoryEntry:
        """Delete one history entry. Raises IndexError for a bad index."""
        with self._lock:
            entry = self._history.pop(index)
        logger.debug("history_removed", index=index, entry_id=entry.entry_id)
        return entry

    # --- saved requests ---------------------------------------------------

    def save_request(self, saved: SavedRequest) -> None:
        """Store ``saved`` under its name, replacing any previous version."""
        with self._lock:
            self._saved[saved.name] = saved.model_copy(deep=True)

    def load_request(self, name: str) -> SavedRequest:
        with self._lock:
            saved = self._saved.get(name)
        if saved is None:
            raise SavedRequestNotFound(name)
        return saved.model_copy(deep=True)

    def delete_request(self, name: str) -> None:
        with self._lock:
            if name not in self._saved:
                raise SavedRequestNotFound(name)
            del self._saved[name]

    def list_requests(self, folder: str | None = None) -> list[SavedRequest]:
        with self._lock:
            saved = list(self._saved.values())
        if folder is not None:
            saved = [s for s in saved if s.folder == folder]
        return [s.model_copy(deep=True) for s in saved]

    def folders(self) -> list[str]:
        seen: list[str] = []
        for saved in self.list_requests():
            if saved.folder not in seen:
                seen.append(saved.folder)
        return seen

    # --- persistence ------------------------------------------------------

    def export(self) -> bytes:
        """Serialize the store to its versioned JSON representation."""
        with self._lock:
            document = CollectionFile(
                saved_requests=list(self._saved.values()),
                history=list(self._history),
            )
        try:
            return document.model_dump_json(indent=2).encode("utf-8")
        except (ValueError, TypeError) as e:
            raise CollectionExportError(f"Could not serialize collection: {e}") from e

    @classmethod
    def load(cls, data: bytes) -> "CollectionStore":
        """Build a new store from ``export()`` output.

        Raises CollectionImportError; nothing is built from a partially valid
        document.
        """
        try:
            raw = json.loads(data)
        except ValueError as e:
            raise CollectionImportError(ImportReason.MALFORMED, f"Collection is not valid JSON: {e}") from e

        if not isinstance(raw, dict) or raw.get("format") != COLLECTION_FORMAT:
            raise CollectionImportError(ImportReason.MALFORMED, "Not an api-workbench collection")
        if raw.get("version") != COLLECTION_VERSION:
            raise CollectionImportError(
                ImportReason.INCOMPATIBLE_VERSION,
                f"Collection version {raw.get('version')!r} is not supported "
                f"(expected {COLLECTION_VERSION})",
            )

        try:
            # JSON mode so bytes fields are decoded from base64
            document = CollectionFile.model_validate_json(data)
        except ValidationError as e:
            raise CollectionImportError(ImportReason.MALFORMED, f"Invalid collection: {e}") from e

        names = [s.name for s in document.saved_requests]
        if len(names) != len(set(names)):
            raise CollectionImportError(ImportReason.MALFORMED, "Duplicate saved request names")

        logger.debug(
            "collection_imported",
            history=len(document.history),
            saved_requests=len(document.saved_requests),
        )
        return cls(history=document.history, saved_requests=document.saved_requests)
