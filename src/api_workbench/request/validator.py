"""Validates and encodes request bodies against their declared content type."""

import json
from typing import Any
from urllib.parse import parse_qsl, urlencode

import yaml

from api_workbench.catalog.base import is_json_media_type
from api_workbench.errors import InvalidBody

FORM_TYPE = "application/x-www-form-urlencoded"


def is_yaml_media_type(content_type: str | None) -> bool:
    if not content_type:
        return False
    media = content_type.split(";", 1)[0].strip().lower()
    return media in ("application/yaml", "application/x-yaml", "text/yaml", "text/x-yaml") or media.endswith("+yaml")


def is_form_media_type(content_type: str | None) -> bool:
    return bool(content_type) and content_type.split(";", 1)[0].strip().lower() == FORM_TYPE


def validate_json(text: str) -> str | None:
    """Check text for JSON syntax errors.

    Returns an error message, or None when the text is valid.
    """
    try:
        json.loads(text)
    except json.JSONDecodeError as e:
        return f"JSONDecodeError: {e.msg} (line {e.lineno}, column {e.colno})"
    return None


def validate_yaml(text: str) -> str | None:
    """Check text for YAML format errors.

    Returns an error message, or None when the text is valid.
    """
    try:
        yaml.safe_load(text)
    except yaml.YAMLError as e:
        return f"YAMLError: {e}"
    return None


def validate_form(text: str) -> str | None:
    try:
        parse_qsl(text, keep_blank_values=True, strict_parsing=bool(text))
    except ValueError as e:
        return f"FormError: {e}"
    return None


def encode_body(body: Any, content_type: str) -> bytes:
    """Serialize a raw or structured body for ``content_type``.

    Structured values (dicts, lists) are serialized for JSON, YAML and form
    bodies. Text for those types is validated and sent as written. Any other
    content type passes through unchanged.
    """
    if is_json_media_type(content_type):
        if isinstance(body, (dict, list, int, float, bool)):
            return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return _checked(body, content_type, validate_json)

    if is_yaml_media_type(content_type):
        if isinstance(body, (dict, list)):
            return yaml.safe_dump(body, sort_keys=False, allow_unicode=True).encode("utf-8")
        return _checked(body, content_type, validate_yaml)

    if is_form_media_type(content_type):
        if isinstance(body, dict):
            return urlencode([(str(k), _form_value(v)) for k, v in body.items()]).encode("ascii")
        if isinstance(body, list):
            return urlencode([(str(k), _form_value(v)) for k, v in body]).encode("ascii")
        return _checked(body, content_type, validate_form)

    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    raise InvalidBody(content_type, f"cannot send a {type(body).__name__} as {content_type}")


def _checked(body: Any, content_type: str, check) -> bytes:
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidBody(content_type, f"not UTF-8 text: {e}") from e
    elif isinstance(body, str):
        text = body
    else:
        raise InvalidBody(content_type, f"cannot send a {type(body).__name__} as {content_type}")

    error = check(text)
    if error:
        raise InvalidBody(content_type, error)
    return text.encode("utf-8")


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
