"""Parameter binder: validates raw user values against an operation.

Raw values are coerced against each parameter's schema, serialized per the
parameter's style, and split into path, query, header, cookie and body
parts of a BoundRequest.
"""

import json
import re
from typing import Any, Mapping
from urllib.parse import quote

from api_workbench.catalog.base import Operation, ParameterDef, SpecDocument
from api_workbench.catalog.schema import (
    AnySchema,
    ArraySchema,
    CyclicSchema,
    ObjectSchema,
    PrimitiveSchema,
    RefSchema,
)
from api_workbench.errors import (
    BindingError,
    MissingRequired,
    StaleOperation,
    TypeMismatch,
    UnboundPathParameter,
    UnknownParameter,
)
from api_workbench.log import get_logger
from api_workbench.request.models import BoundRequest, Pair
from api_workbench.request.validator import encode_body

logger = get_logger(__name__)

_INTEGER = re.compile(r"^[+-]?\d+$")
_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_PLACEHOLDER = re.compile(r"\{([^{}]*)\}")

DELIMITERS = {
    "form": ",",
    "simple": ",",
    "label": ",",
    "matrix": ",",
    "spaceDelimited": " ",
    "pipeDelimited": "|",
    "deepObject": ",",
}

Value = str | list[str] | dict[str, str]


class ParameterBinder:
    """Binds raw values to the operations of one SpecDocument."""

    def __init__(self, document: SpecDocument):
        self.document = document
        self.arena = document.schemas

    def bind(
        self,
        operation: Operation,
        values: Mapping[str, Any] | None = None,
        body: Any = None,
        content_type: str | None = None,
    ) -> BoundRequest:
        """Bind values to ``operation``, raising the first BindingError found."""
        bound, errors = self._bind(operation, values or {}, body, content_type)
        if errors:
            raise next(iter(errors.values()))
        logger.debug(
            "request_bound",
            method=bound.method,
            path=bound.path,
            query=len(bound.query),
            headers=len(bound.headers),
            body_bytes=len(bound.body) if bound.body is not None else None,
        )
        return bound

    def check(
        self,
        operation: Operation,
        values: Mapping[str, Any] | None = None,
        body: Any = None,
        content_type: str | None = None,
    ) -> dict[str, BindingError]:
        """Return every binding problem keyed by field name.

        Returns an empty dict when ``bind`` would succeed.
        """
        _, errors = self._bind(operation, values or {}, body, content_type)
        return errors

    def _bind(
        self,
        operation: Operation,
        values: Mapping[str, Any],
        body: Any,
        content_type: str | None,
    ) -> tuple[BoundRequest | None, dict[str, BindingError]]:
        if not self.document.owns(operation):
            return None, {"operation": StaleOperation(operation.method, operation.path)}

        errors: dict[str, BindingError] = {}
        path_values: dict[str, str] = {}
        query: list[Pair] = []
        headers: list[Pair] = []
        cookies: list[Pair] = []

        for param in operation.parameters:
            raw = values.get(param.name)
            if raw is None or (raw == "" and param.location == "path"):
                if param.required:
                    errors.setdefault(param.name, MissingRequired(param.name))
                continue
            try:
                value = self._coerce(param.name, param.schema_handle, raw, DELIMITERS.get(param.style, ","))
            except BindingError as e:
                errors.setdefault(param.name, e)
                continue

            if param.location == "path":
                path_values[param.name] = _path_value(param, value)
            elif param.location == "query":
                query.extend(_query_pairs(param, value))
            elif param.location == "header":
                headers.append((param.name, _simple(value, param.explode, encode=False)))
            elif param.location == "cookie":
                cookies.extend(_cookie_pairs(param, value))

        declared = {p.name for p in operation.parameters}
        for name in values:
            if name not in declared:
                errors.setdefault(name, UnknownParameter(name))

        path = operation.path
        for name, text in path_values.items():
            path = path.replace("{" + name + "}", text)
        for match in _PLACEHOLDER.finditer(path):
            errors.setdefault(match.group(1), UnboundPathParameter(match.group(1)))

        encoded_body = None
        body_type = None
        body_def = operation.request_body
        if body is None:
            if body_def is not None and body_def.required:
                errors.setdefault("body", MissingRequired("body"))
        else:
            body_type = content_type or (body_def.content_type if body_def else None)
            if body_type is None:
                body_type = "application/json" if isinstance(body, (dict, list)) else "application/octet-stream"
            try:
                encoded_body = encode_body(body, body_type)
            except BindingError as e:
                errors.setdefault("body", e)

        if errors:
            return None, errors

        return (
            BoundRequest(
                operation=operation.ref,
                document_id=operation.document_id,
                method=operation.method,
                path=path,
                query=tuple(query),
                headers=tuple(headers),
                cookies=tuple(cookies),
                body=encoded_body,
                content_type=body_type,
            ),
            {},
        )

    def _coerce(self, name: str, handle: int | None, raw: Any, delimiter: str = ",") -> Value:
        if handle is None:
            return _as_text(raw)
        node = self.arena.resolve(handle)

        if isinstance(node, PrimitiveSchema):
            return _coerce_primitive(name, node, raw)
        if isinstance(node, ArraySchema):
            if isinstance(raw, str):
                items = raw.split(delimiter) if raw != "" else []
            elif isinstance(raw, (list, tuple)):
                items = list(raw)
            else:
                items = [raw]
            return [self._item(name, node.items, item) for item in items]
        if isinstance(node, ObjectSchema):
            if isinstance(raw, str):
                try:
                    raw = json.loads(raw)
                except ValueError:
                    raise TypeMismatch(name, "object", raw) from None
            if not isinstance(raw, dict):
                raise TypeMismatch(name, "object", _as_text(raw))
            return {str(k): self._item(name, node.properties.get(k), v) for k, v in raw.items()}
        if isinstance(node, (AnySchema, CyclicSchema)):
            return _as_text(raw)
        if isinstance(node, RefSchema):
            raise TypeError(f"Unresolved ref node for parameter {name}")
        raise TypeError(f"Unhandled schema kind: {node.kind}")

    def _item(self, name: str, handle: int | None, raw: Any) -> str:
        """Coerce one array item or object property to text."""
        if handle is None:
            return _as_text(raw)
        node = self.arena.resolve(handle)
        if isinstance(node, PrimitiveSchema):
            return _coerce_primitive(name, node, raw)
        if isinstance(node, (ArraySchema, ObjectSchema, AnySchema, CyclicSchema)):
            return _as_text(raw)
        raise TypeError(f"Unhandled schema kind: {node.kind}")


def _coerce_primitive(name: str, node: PrimitiveSchema, raw: Any) -> str:
    if isinstance(raw, (dict, list, tuple)):
        raise TypeMismatch(name, node.type, _as_text(raw))

    if node.type == "integer":
        if isinstance(raw, bool):
            raise TypeMismatch(name, "integer", _as_text(raw))
        if isinstance(raw, float) and raw.is_integer():
            raw = int(raw)
        text = str(raw).strip()
        if not _INTEGER.match(text):
            raise TypeMismatch(name, "integer", str(raw))
        text = str(int(text))
    elif node.type == "number":
        if isinstance(raw, bool):
            raise TypeMismatch(name, "number", _as_text(raw))
        text = str(raw).strip()
        if not _NUMBER.match(text):
            raise TypeMismatch(name, "number", str(raw))
    elif node.type == "boolean":
        text = _as_text(raw).strip().lower()
        if text not in ("true", "false"):
            raise TypeMismatch(name, "boolean", str(raw))
    elif node.type == "string":
        text = _as_text(raw)
    else:
        raise TypeError(f"Unhandled primitive type: {node.type}")

    if node.enum is not None:
        allowed = [_as_text(v) for v in node.enum]
        if _enum_key(node.type, text) not in {_enum_key(node.type, v) for v in node.enum}:
            raise TypeMismatch(name, f"one of [{', '.join(allowed)}]", str(raw))
    return text


def _enum_key(type_: str, value: Any) -> Any:
    """Numbers compare by value so "2" matches an enum entry of 2.0."""
    if type_ in ("integer", "number") and not isinstance(value, bool):
        try:
            return float(value)
        except (TypeError, ValueError):
            pass
    return _as_text(value)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _simple(value: Value, explode: bool, encode: bool) -> str:
    """``simple`` style: comma-joined items, ``k=v`` pairs when exploded."""
    enc = _encode_path if encode else _identity
    if isinstance(value, list):
        return ",".join(enc(v) for v in value)
    if isinstance(value, dict):
        if explode:
            return ",".join(f"{enc(k)}={enc(v)}" for k, v in value.items())
        return ",".join(enc(part) for kv in value.items() for part in kv)
    return enc(value)


def _path_value(param: ParameterDef, value: Value) -> str:
    if param.style == "label":
        sep = "." if param.explode else ","
        if isinstance(value, list):
            return "." + sep.join(_encode_path(v) for v in value)
        if isinstance(value, dict):
            if param.explode:
                return "." + ".".join(f"{_encode_path(k)}={_encode_path(v)}" for k, v in value.items())
            return "." + ",".join(_encode_path(p) for kv in value.items() for p in kv)
        return "." + _encode_path(value)

    if param.style == "matrix":
        name = _encode_path(param.name)
        if isinstance(value, list):
            if param.explode:
                return "".join(f";{name}={_encode_path(v)}" for v in value)
            return f";{name}=" + ",".join(_encode_path(v) for v in value)
        if isinstance(value, dict):
            if param.explode:
                return "".join(f";{_encode_path(k)}={_encode_path(v)}" for k, v in value.items())
            return f";{name}=" + ",".join(_encode_path(p) for kv in value.items() for p in kv)
        return f";{name}={_encode_path(value)}"

    return _simple(value, param.explode, encode=True)


def _query_pairs(param: ParameterDef, value: Value) -> list[Pair]:
    delimiter = DELIMITERS.get(param.style, ",")
    if isinstance(value, list):
        if param.explode:
            return [(param.name, v) for v in value]
        return [(param.name, delimiter.join(value))]
    if isinstance(value, dict):
        if param.style == "deepObject":
            return [(f"{param.name}[{k}]", v) for k, v in value.items()]
        if param.explode:
            return list(value.items())
        return [(param.name, delimiter.join(part for kv in value.items() for part in kv))]
    return [(param.name, value)]


def _cookie_pairs(param: ParameterDef, value: Value) -> list[Pair]:
    if isinstance(value, list):
        return [(param.name, ",".join(value))]
    if isinstance(value, dict):
        if param.explode:
            return list(value.items())
        return [(param.name, ",".join(part for kv in value.items() for part in kv))]
    return [(param.name, value)]


def _encode_path(text: str) -> str:
    # RFC 3986: everything but unreserved characters is percent-encoded
    return quote(text, safe="")


def _identity(text: str) -> str:
    return text
