"""History entries, saved requests, and the versioned collection file."""

from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from api_workbench.catalog.base import OperationRef
from api_workbench.execution.models import ExecutionResult, utcnow
from api_workbench.request.models import RequestDescriptor

COLLECTION_FORMAT = "api-workbench.collection"
COLLECTION_VERSION = 1


class HistoryEntry(BaseModel):
    """One recorded execution. Never mutated once created."""

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    entry_id: str = Field(default_factory=lambda: uuid4().hex)
    request: RequestDescriptor
    result: ExecutionResult
    recorded_at: datetime = Field(default_factory=utcnow)
    label: str | None = None


class SavedRequest(BaseModel):
    """A user-named parameter preset for one operation."""

    name: str
    operation: OperationRef
    values: dict[str, Any] = {}
    body: str | None = None
    content_type: str | None = None
    base_url: str | None = None
    headers: list[tuple[str, str]] = []
    folder: str = ""


class CollectionFile(BaseModel):
    """On-disk layout of an exported collection."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    format: Literal["api-workbench.collection"] = COLLECTION_FORMAT
    version: int = COLLECTION_VERSION
    saved_requests: list[SavedRequest] = []
    history: list[HistoryEntry] = []
