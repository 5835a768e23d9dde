"""Error hierarchy shared by every core component.

Parse, binding and build errors are raised to the immediate caller.
Network problems never show up here: the executor turns them into
``Failure`` values instead.
"""

from enum import Enum


class WorkbenchError(Exception):
    """Base class for all api-workbench errors."""


# --- spec ingestion ---------------------------------------------------------


class ParseReason(str, Enum):
    MALFORMED = "malformed"
    UNSUPPORTED_VERSION = "unsupported_version"
    UNRESOLVED_REFERENCE = "unresolved_reference"


class ParseError(WorkbenchError):
    """The API document could not be turned into a SpecDocument."""

    reason: ParseReason = ParseReason.MALFORMED

    def __init__(self, message: str, name: str | None = None):
        self.name = name
        super().__init__(message)


class MalformedDocument(ParseError):
    reason = ParseReason.MALFORMED


class UnsupportedVersion(ParseError):
    reason = ParseReason.UNSUPPORTED_VERSION


class UnresolvedReference(ParseError):
    reason = ParseReason.UNRESOLVED_REFERENCE

    def __init__(self, name: str):
        super().__init__(f"Unresolved reference: {name}", name=name)


# --- parameter binding ------------------------------------------------------


class BindingError(WorkbenchError):
    """A supplied value does not fit the operation it is bound against.

    ``field`` names the offending parameter (or ``"body"``) so a caller can
    point at the input that needs fixing.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class MissingRequired(BindingError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(name, f"Missing required parameter: {name}")


class TypeMismatch(BindingError):
    def __init__(self, name: str, expected: str, got: str):
        self.name = name
        self.expected = expected
        self.got = got
        super().__init__(name, f"Parameter {name}: expected {expected}, got {got!r}")


class UnboundPathParameter(BindingError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(name, f"Path parameter {{{name}}} was not substituted")


class UnknownParameter(BindingError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(name, f"Operation declares no parameter named {name!r}")


class StaleOperation(BindingError):
    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(
            "operation",
            f"{method} {path} belongs to a document that is no longer loaded",
        )


class InvalidBody(BindingError):
    def __init__(self, content_type: str, detail: str):
        self.content_type = content_type
        self.detail = detail
        super().__init__("body", f"Body is not valid {content_type}: {detail}")


# --- request building -------------------------------------------------------


class BuildError(WorkbenchError):
    """The bound request could not be turned into a RequestDescriptor."""


class InvalidBaseUrl(BuildError):
    def __init__(self, url: str, detail: str):
        self.url = url
        self.detail = detail
        super().__init__(f"Invalid base URL {url!r}: {detail}")


# --- persistence ------------------------------------------------------------


class ImportReason(str, Enum):
    MALFORMED = "malformed"
    INCOMPATIBLE_VERSION = "incompatible_version"
    MISSING_MEMBER = "missing_member"
    INVALID_SPEC = "invalid_spec"
    INVALID_COLLECTION = "invalid_collection"


class CollectionImportError(WorkbenchError):
    def __init__(self, reason: ImportReason, message: str):
        self.reason = reason
        super().__init__(message)


class CollectionExportError(WorkbenchError):
    pass


class ArchiveError(WorkbenchError):
    def __init__(self, reason: ImportReason, message: str):
        self.reason = reason
        super().__init__(message)


# --- lookups and workspace --------------------------------------------------


class NotFoundError(WorkbenchError, LookupError):
    """A lookup by key found nothing."""


class OperationNotFound(NotFoundError):
    def __init__(self, method: str, path: str):
        self.method = method
        self.path = path
        super().__init__(f"No operation {method} {path} in the loaded document")


class SavedRequestNotFound(NotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No saved request named {name!r}")


class NoDocumentLoaded(WorkbenchError):
    def __init__(self):
        super().__init__("No API document has been loaded into the workspace")


class SlotBusy(WorkbenchError):
    def __init__(self, slot: str):
        self.slot = slot
        super().__init__(f"An execution is already in flight for {slot!r}")


class ConfigError(WorkbenchError, ValueError):
    """An environment variable or setting has an unusable value."""
