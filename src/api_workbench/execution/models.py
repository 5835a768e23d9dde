"""Execution outcomes: a captured Response or a Failure, never an exception."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FailureKind(str, Enum):
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    TLS_ERROR = "tls_error"
    DNS_FAILURE = "dns_failure"
    CANCELLED = "cancelled"
    OTHER = "other"


class Response(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    outcome: Literal["response"] = "response"
    status_code: int
    reason_phrase: str = ""
    http_version: str = ""
    url: str = ""
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    truncated: bool = False
    elapsed: float  # seconds
    captured_at: datetime = Field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Literal["failure"] = "failure"
    kind: FailureKind
    message: str = ""
    elapsed: float = 0.0
    captured_at: datetime = Field(default_factory=utcnow)


ExecutionResult = Annotated[Union[Response, Failure], Field(discriminator="outcome")]
