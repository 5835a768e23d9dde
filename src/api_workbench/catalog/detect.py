"""Auto-detect API document format and load raw document bytes."""

import yaml

from api_workbench.errors import MalformedDocument


def load_document(data: bytes) -> dict:
    """Decode document bytes (JSON or YAML) into a mapping."""
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedDocument(f"Document is not UTF-8 text: {e}") from e

    # JSON is a subset of YAML, so one loader covers both
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedDocument(f"Document is not valid JSON or YAML: {e}") from e

    if not isinstance(doc, dict):
        raise MalformedDocument("Document root must be a mapping")
    return doc


def detect_format(doc: dict) -> str:
    """Detect the format of a loaded API document.

    Returns: 'openapi', 'swagger', 'postman', or 'unknown'.
    """
    if "openapi" in doc:
        return "openapi"
    if "swagger" in doc:
        return "swagger"
    info = doc.get("info")
    if isinstance(info, dict) and ("_postman_id" in info or "postman" in str(info.get("schema", ""))):
        return "postman"
    return "unknown"
