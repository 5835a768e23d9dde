"""Models for bound and fully built HTTP requests."""

import base64
from typing import Literal

from pydantic import BaseModel, ConfigDict

from api_workbench.catalog.base import OperationRef

Pair = tuple[str, str]


class BoundRequest(BaseModel):
    """Validated, serialized parameter values for one operation."""

    model_config = ConfigDict(frozen=True)

    operation: OperationRef
    document_id: str
    method: str
    path: str  # substituted and percent-encoded
    query: tuple[Pair, ...] = ()
    headers: tuple[Pair, ...] = ()
    cookies: tuple[Pair, ...] = ()
    body: bytes | None = None
    content_type: str | None = None


class StaticAuth(BaseModel):
    """A credential injected as a header, query parameter or cookie."""

    model_config = ConfigDict(frozen=True)

    location: Literal["header", "query", "cookie"] = "header"
    name: str
    value: str

    @classmethod
    def bearer(cls, token: str) -> "StaticAuth":
        return cls(location="header", name="Authorization", value=f"Bearer {token}")

    @classmethod
    def basic(cls, username: str, password: str) -> "StaticAuth":
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        return cls(location="header", name="Authorization", value=f"Basic {encoded}")


class RequestOverrides(BaseModel):
    """Ad hoc additions applied after everything the document declares."""

    model_config = ConfigDict(frozen=True)

    headers: tuple[Pair, ...] = ()
    query: tuple[Pair, ...] = ()
    auth: StaticAuth | None = None


class RequestDescriptor(BaseModel):
    """A fully resolved, ready-to-send HTTP request."""

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    method: str
    url: str
    headers: tuple[Pair, ...] = ()
    body: bytes | None = None
    content_type: str | None = None
    operation: OperationRef | None = None

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None
