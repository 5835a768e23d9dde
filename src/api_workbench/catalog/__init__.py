"""Spec ingestion: API document bytes in, SpecDocument out."""

from api_workbench.catalog.base import (
    Operation,
    OperationRef,
    OperationSummary,
    ParameterDef,
    RequestBodyDef,
    RequestPreset,
    SpecDocument,
)
from api_workbench.catalog.detect import detect_format, load_document
from api_workbench.catalog.openapi import parse_openapi
from api_workbench.catalog.postman import parse_postman
from api_workbench.errors import UnsupportedVersion
from api_workbench.log import get_logger

__all__ = [
    "Operation",
    "OperationRef",
    "OperationSummary",
    "ParameterDef",
    "RequestBodyDef",
    "RequestPreset",
    "SpecDocument",
    "parse_document",
]

logger = get_logger(__name__)


def parse_document(data: bytes) -> SpecDocument:
    """Parse OpenAPI 3.x or Postman v2.1 bytes into a SpecDocument.

    Pure: the caller decides whether to replace its live document.
    """
    doc = load_document(data)
    fmt = detect_format(doc)

    if fmt == "openapi":
        document = parse_openapi(doc)
    elif fmt == "postman":
        document = parse_postman(doc)
    elif fmt == "swagger":
        raise UnsupportedVersion(f"Swagger {doc.get('swagger')} documents are not supported")
    else:
        raise UnsupportedVersion("Could not detect an OpenAPI version in the document")

    logger.debug(
        "spec_parsed",
        format=fmt,
        title=document.title,
        operations=len(document.operations),
        schemas=len(document.schemas.nodes),
    )
    return document
