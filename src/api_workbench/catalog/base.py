"""Normalized data models for a parsed API document.

Every importer (OpenAPI, Postman) converts its input into these models so
binding, building and execution never look at the raw document again.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, PrivateAttr

from api_workbench.catalog.schema import SchemaArena
from api_workbench.errors import OperationNotFound

Location = Literal["path", "query", "header", "cookie"]

DEFAULT_STYLES = {"path": "simple", "header": "simple", "query": "form", "cookie": "form"}


def is_json_media_type(content_type: str | None) -> bool:
    """True for application/json and structured-suffix types like +json."""
    if not content_type:
        return False
    media = content_type.split(";", 1)[0].strip().lower()
    return media == "application/json" or media.endswith("+json")


class OperationRef(BaseModel):
    """Points at an operation by (method, path) without owning it."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str

    def __str__(self) -> str:
        return f"{self.method} {self.path}"


class ParameterDef(BaseModel):
    """A single declared parameter (path, query, header, or cookie)."""

    model_config = ConfigDict(frozen=True)

    name: str
    location: Location
    required: bool
    schema_handle: int
    style: str = "form"
    explode: bool = False
    description: str = ""
    example: Any = None


class RequestBodyDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_type: str
    content_types: tuple[str, ...] = ()
    schema_handle: int | None = None
    required: bool = False


class OperationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str
    path: str
    summary: str
    operation_id: str | None = None
    tags: tuple[str, ...] = ()


class Operation(BaseModel):
    """One method + path combination with its parameters and body shape."""

    model_config = ConfigDict(frozen=True)

    method: str  # GET / POST / PUT / DELETE / PATCH ...
    path: str  # /pets/{petId}
    summary: str = ""
    description: str = ""
    operation_id: str | None = None
    tags: tuple[str, ...] = ()
    parameters: tuple[ParameterDef, ...] = ()
    request_body: RequestBodyDef | None = None
    document_id: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.method, self.path)

    @property
    def ref(self) -> OperationRef:
        return OperationRef(method=self.method, path=self.path)

    def parameter(self, name: str) -> ParameterDef | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def summarize(self) -> OperationSummary:
        return OperationSummary(
            method=self.method,
            path=self.path,
            summary=self.summary,
            operation_id=self.operation_id,
            tags=self.tags,
        )


class RequestPreset(BaseModel):
    """A concrete request stored in the source document (a Postman item)."""

    model_config = ConfigDict(frozen=True)

    name: str
    folder: str = ""
    operation: OperationRef
    values: dict[str, str] = {}
    body: str | None = None
    content_type: str | None = None


class SpecDocument(BaseModel):
    """Root of a parsed document. Immutable; replaced wholesale on re-import."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    source_format: Literal["openapi", "postman"] = "openapi"
    version: str = ""
    title: str = ""
    servers: tuple[str, ...] = ()
    operations: tuple[Operation, ...] = ()
    schemas: SchemaArena = SchemaArena()
    presets: tuple[RequestPreset, ...] = ()

    _index: dict[tuple[str, str], Operation] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index = {op.key: op for op in self.operations}

    def list_operations(self) -> list[OperationSummary]:
        return [op.summarize() for op in self.operations]

    def get_operation(self, method: str, path: str) -> Operation:
        try:
            return self._index[(method.upper(), path)]
        except KeyError:
            raise OperationNotFound(method.upper(), path) from None

    def owns(self, operation: Operation) -> bool:
        return operation.document_id == self.document_id
