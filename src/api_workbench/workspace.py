"""Workspace: the one explicit context object for a session.

Holds the live SpecDocument, the CollectionStore and the Executor, and
wires the pipeline together: operation → bind → build → execute → record.
"""

import threading
from typing import Any, Mapping

from api_workbench.catalog import Operation, OperationRef, OperationSummary, SpecDocument, parse_document
from api_workbench.collection import (
    CollectionStore,
    HistoryEntry,
    SavedRequest,
    WorkspaceArchive,
    export_archive,
    read_archive,
)
from api_workbench.config import Settings
from api_workbench.errors import InvalidBaseUrl, NoDocumentLoaded, SlotBusy, UnknownParameter
from api_workbench.execution import ExecutionHandle, Executor
from api_workbench.log import get_logger
from api_workbench.request import (
    BoundRequest,
    ParameterBinder,
    RequestDescriptor,
    RequestOverrides,
    build_request,
)
from api_workbench.request.builder import validate_base_url

logger = get_logger(__name__)


class Workspace:
    """One active document, one collection, one executor."""

    def __init__(
        self,
        settings: Settings | None = None,
        executor: Executor | None = None,
        store: CollectionStore | None = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor or Executor(self.settings)
        self._owns_executor = executor is None
        self.store = store if store is not None else CollectionStore()
        self._document: SpecDocument | None = None
        self._spec_source: bytes | None = None
        self._spec_name: str | None = None
        self._slots: dict[str, ExecutionHandle] = {}
        self._slots_lock = threading.Lock()

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_executor:
            self.executor.close()

    # --- document ---------------------------------------------------------

    @property
    def document(self) -> SpecDocument:
        if self._document is None:
            raise NoDocumentLoaded()
        return self._document

    def load_spec(self, data: bytes, name: str | None = None) -> SpecDocument:
        """Parse ``data`` and, only if that succeeds, make it the live document."""
        document = parse_document(data)
        self._document = document
        self._spec_source = data
        self._spec_name = name
        logger.info(
            "spec_loaded",
            title=document.title,
            format=document.source_format,
            operations=len(document.operations),
        )
        return document

    def list_operations(self) -> list[OperationSummary]:
        return self.document.list_operations()

    def get_operation(self, method: str, path: str) -> Operation:
        return self.document.get_operation(method, path)

    def default_base_url(self) -> str | None:
        """First server URL declared by the document that can serve as a base."""
        if self._document is None:
            return None
        for server in self._document.servers:
            try:
                return validate_base_url(server)
            except InvalidBaseUrl:
                continue
        return None

    # --- binding and building ---------------------------------------------

    def binder(self) -> ParameterBinder:
        return ParameterBinder(self.document)

    def bind(
        self,
        operation: Operation,
        values: Mapping[str, Any] | None = None,
        body: Any = None,
        content_type: str | None = None,
    ) -> BoundRequest:
        return self.binder().bind(operation, values, body, content_type)

    def prepare(
        self,
        method: str,
        path: str,
        values: Mapping[str, Any] | None = None,
        body: Any = None,
        base_url: str | None = None,
        overrides: RequestOverrides | None = None,
        content_type: str | None = None,
    ) -> RequestDescriptor:
        """Bind and build a request for ``method path`` of the live document."""
        operation = self.get_operation(method, path)
        bound = self.bind(operation, values, body, content_type)
        base_url = base_url or self.default_base_url()
        if base_url is None:
            raise InvalidBaseUrl("", "no base URL given and the document declares no usable server")
        return build_request(bound, base_url, overrides)

    # --- execution --------------------------------------------------------

    def submit(
        self,
        request: RequestDescriptor,
        timeout: float | None = None,
        label: str | None = None,
        slot: str | None = None,
    ) -> ExecutionHandle:
        """Dispatch in the background; the result is recorded when it completes.

        ``slot`` names the UI element that triggered the call; a slot can only
        have one execution in flight.
        """
        with self._slots_lock:
            if slot is not None:
                current = self._slots.get(slot)
                if current is not None and current.in_flight:
                    raise SlotBusy(slot)
            handle = self.executor.submit(request, timeout)
            if slot is not None:
                self._slots[slot] = handle

        handle.add_done_callback(lambda h, result: self.store.record(h.request, result, label))
        return handle

    def execute(
        self,
        request: RequestDescriptor,
        timeout: float | None = None,
        label: str | None = None,
    ) -> HistoryEntry:
        """Dispatch and wait; returns the recorded history entry."""
        result = self.executor.execute(request, timeout)
        return self.store.record(request, result, label)

    def replay(
        self,
        index: int,
        timeout: float | None = None,
        label: str | None = None,
        slot: str | None = None,
    ) -> ExecutionHandle:
        """Send the request of history entry ``index`` again."""
        entry = self.store.get(index)
        return self.submit(entry.request, timeout, label=label or entry.label, slot=slot)

    # --- saved requests ---------------------------------------------------

    def save_request(
        self,
        name: str,
        method: str,
        path: str,
        values: Mapping[str, Any] | None = None,
        body: str | None = None,
        content_type: str | None = None,
        base_url: str | None = None,
        headers: list[tuple[str, str]] | None = None,
        folder: str = "",
    ) -> SavedRequest:
        operation = self.get_operation(method, path)
        for param_name in values or {}:
            if operation.parameter(param_name) is None:
                raise UnknownParameter(param_name)

        saved = SavedRequest(
            name=name,
            operation=OperationRef(method=operation.method, path=operation.path),
            values=dict(values or {}),
            body=body,
            content_type=content_type,
            base_url=base_url,
            headers=list(headers or []),
            folder=folder,
        )
        self.store.save_request(saved)
        return saved

    def import_presets(self) -> list[SavedRequest]:
        """Save every request stored in the live document (Postman items)."""
        imported = []
        for preset in self.document.presets:
            saved = SavedRequest(
                name=preset.name,
                operation=preset.operation,
                values=dict(preset.values),
                body=preset.body,
                content_type=preset.content_type,
                folder=preset.folder,
            )
            self.store.save_request(saved)
            imported.append(saved)
        logger.info("presets_imported", count=len(imported))
        return imported

    def prepare_saved(
        self,
        name: str,
        values: Mapping[str, Any] | None = None,
        body: Any = None,
        base_url: str | None = None,
        overrides: RequestOverrides | None = None,
    ) -> RequestDescriptor:
        """Build a saved request, with ``values`` layered over its defaults."""
        saved = self.store.load_request(name)
        overrides = overrides or RequestOverrides()
        merged_overrides = RequestOverrides(
            headers=tuple(saved.headers) + overrides.headers,
            query=overrides.query,
            auth=overrides.auth,
        )
        return self.prepare(
            saved.operation.method,
            saved.operation.path,
            {**saved.values, **(values or {})},
            body if body is not None else saved.body,
            base_url or saved.base_url,
            merged_overrides,
            saved.content_type,
        )

    # --- archives ---------------------------------------------------------

    def export_archive(self) -> bytes:
        return export_archive(self._spec_source, self._spec_name, self.store)

    def import_archive(self, data: bytes) -> WorkspaceArchive:
        """Replace document and collection with the archive's, or change nothing."""
        archive = read_archive(data)
        self._document = archive.document
        self._spec_source = archive.spec_source
        self._spec_name = archive.spec_name
        self.store = archive.store
        logger.info(
            "archive_imported",
            operations=len(archive.document.operations) if archive.document else 0,
            history=len(archive.store),
        )
        return archive
