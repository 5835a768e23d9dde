"""Postman Collection v2.1 parser.

Turns a Postman collection into a SpecDocument so saved Postman requests
can be bound, built and executed like OpenAPI operations.
"""

import json
import re
from typing import Any
from urllib.parse import urlencode, urlsplit
from uuid import uuid4

from api_workbench.catalog.base import (
    Operation,
    ParameterDef,
    RequestBodyDef,
    RequestPreset,
    SpecDocument,
)
from api_workbench.catalog.schema import SchemaResolver
from api_workbench.errors import MalformedDocument
from api_workbench.log import get_logger

logger = get_logger(__name__)

_TEMPLATE_VAR = re.compile(r"^\{\{(.+)\}\}$")
_EMBEDDED_VAR = re.compile(r"\{\{([^{}]+)\}\}")

_RAW_LANGUAGES = {
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "javascript": "application/javascript",
    "text": "text/plain",
}


def parse_postman(doc: dict, document_id: str | None = None) -> SpecDocument:
    """Parse a loaded Postman Collection v2.1 into a SpecDocument.

    Items sharing a method and path become one operation whose parameters
    are the union of theirs; every item is also kept as a RequestPreset so
    none of its concrete values are lost.
    """
    items = doc.get("item", [])
    if not isinstance(items, list):
        raise MalformedDocument("Postman collection 'item' must be a list")

    info = doc.get("info") or {}
    title = str(info.get("name", ""))
    document_id = document_id or uuid4().hex
    variables = _variables(doc.get("variable"))
    resolver = SchemaResolver()
    string_schema = resolver.resolve({"type": "string"})

    requests: list[tuple[str, dict]] = []
    _collect_items(items, requests, title)

    operations: dict[tuple[str, str], Operation] = {}
    presets: list[RequestPreset] = []
    servers: list[str] = []
    for folder, item in requests:
        operation, server = _parse_request(item, document_id, string_schema, variables)
        if operation.key in operations:
            logger.debug("postman_duplicate_merged", method=operation.method, path=operation.path)
            operations[operation.key] = _merge(operations[operation.key], operation)
        else:
            operations[operation.key] = operation
        if server and server not in servers:
            servers.append(server)
        presets.append(_preset(item, folder, operation, variables, {p.name for p in presets}))

    return SpecDocument(
        document_id=document_id,
        source_format="postman",
        version=str(info.get("schema", "")),
        title=title,
        servers=tuple(servers),
        operations=tuple(operations.values()),
        schemas=resolver.arena(),
        presets=tuple(presets),
    )


def _collect_items(items: list, requests: list[tuple[str, dict]], folder: str) -> None:
    """Recursively collect (folder name, request item) pairs."""
    for item in items:
        if not isinstance(item, dict):
            raise MalformedDocument("Postman item must be a mapping")
        if "item" in item:
            _collect_items(item["item"] or [], requests, str(item.get("name") or folder))
        elif "request" in item:
            requests.append((folder, item))


def _merge(first: Operation, other: Operation) -> Operation:
    """Add parameters (and a body) that ``other`` declares and ``first`` lacks."""
    names = {p.name for p in first.parameters}
    extra = tuple(p for p in other.parameters if p.name not in names)
    return first.model_copy(
        update={
            "parameters": first.parameters + extra,
            "request_body": first.request_body or other.request_body,
        }
    )


def _preset(
    item: dict,
    folder: str,
    operation: Operation,
    variables: dict[str, str],
    taken: set[str],
) -> RequestPreset:
    req = _request_mapping(item)
    values: dict[str, str] = {}
    for param in operation.parameters:
        if param.example is not None:
            values[param.name] = _substitute(str(param.example), variables)

    body = None
    raw_body = req.get("body")
    if isinstance(raw_body, dict):
        if raw_body.get("mode") == "raw" and isinstance(raw_body.get("raw"), str):
            body = _substitute(raw_body["raw"], variables)
        elif raw_body.get("mode") == "urlencoded":
            pairs = [
                (f["key"], _substitute(str(f.get("value", "")), variables))
                for f in raw_body.get("urlencoded") or []
                if isinstance(f, dict) and f.get("key") and not f.get("disabled")
            ]
            body = urlencode(pairs)

    name = str(item.get("name") or f"{operation.method} {operation.path}")
    unique = name
    counter = 2
    while unique in taken:
        unique = f"{name} ({counter})"
        counter += 1
    return RequestPreset(
        name=unique,
        folder=folder,
        operation=operation.ref,
        values=values,
        body=body,
        content_type=operation.request_body.content_type if operation.request_body and body is not None else None,
    )



def _parse_request(
    item: dict, document_id: str, string_schema: int, variables: dict[str, str]
) -> tuple[Operation, str | None]:
    req = _request_mapping(item)
    method = str(req.get("method") or "GET").upper()
    url = _normalize_url(req.get("url"))

    path, path_names = _path_template(url.get("path") or [])
    path_examples = {v.get("key"): v.get("value") for v in url.get("variable") or [] if isinstance(v, dict)}

    params = [
        ParameterDef(
            name=name,
            location="path",
            required=True,
            schema_handle=string_schema,
            style="simple",
            example=path_examples.get(name, variables.get(name)),
        )
        for name in path_names
    ]
    params.extend(
        ParameterDef(
            name=q["key"],
            location="query",
            required=False,
            schema_handle=string_schema,
            description=_description(q),
            example=q.get("value"),
        )
        for q in url.get("query") or []
        if q.get("key") and not q.get("disabled")
    )

    content_type_header = None
    for h in req.get("header") or []:
        if not h.get("key") or h.get("disabled"):
            continue
        if h["key"].lower() == "content-type":
            content_type_header = h.get("value")
            continue
        params.append(
            ParameterDef(
                name=h["key"],
                location="header",
                required=False,
                schema_handle=string_schema,
                style="simple",
                description=_description(h),
                example=h.get("value"),
            )
        )

    operation = Operation(
        method=method,
        path=path,
        summary=item.get("name", ""),
        description=_description(req),
        parameters=tuple(params),
        request_body=_parse_body(req.get("body"), content_type_header),
        document_id=document_id,
    )
    return operation, _server(url, variables)


def _normalize_url(url: Any) -> dict:
    if isinstance(url, dict):
        if "path" not in url and isinstance(url.get("raw"), str):
            return {**_normalize_url(url["raw"]), **url}
        return url
    if isinstance(url, str):
        parts = urlsplit(url)
        return {
            "protocol": parts.scheme,
            "host": [parts.netloc] if parts.netloc else [],
            "path": [s for s in parts.path.split("/") if s],
            "query": [
                {"key": k, "value": v}
                for k, _, v in (pair.partition("=") for pair in parts.query.split("&") if pair)
            ],
        }
    return {}


def _path_template(segments: list) -> tuple[str, list[str]]:
    """Convert ``:id`` segments and ``{{id}}`` variables into ``{id}`` placeholders."""
    parts = []
    names = []
    for segment in segments:
        segment = str(segment)
        if segment.startswith(":") and len(segment) > 1:
            names.append(segment[1:])
            parts.append("{" + segment[1:] + "}")
            continue
        for match in _EMBEDDED_VAR.finditer(segment):
            if match.group(1) not in names:
                names.append(match.group(1))
        parts.append(_EMBEDDED_VAR.sub(lambda m: "{" + m.group(1) + "}", segment))
    return "/" + "/".join(parts), names


def _request_mapping(item: dict) -> dict:
    req = item["request"]
    if isinstance(req, str):
        return {"method": "GET", "url": req}
    return req


def _substitute(text: str, variables: dict[str, str]) -> str:
    """Replace ``{{name}}`` with collection variables; unknown names stay."""
    return _EMBEDDED_VAR.sub(lambda m: variables.get(m.group(1), m.group(0)), text)


def _parse_body(body: Any, content_type_header: str | None) -> RequestBodyDef | None:
    if not isinstance(body, dict):
        return None
    mode = body.get("mode")
    if mode == "raw":
        language = ((body.get("options") or {}).get("raw") or {}).get("language")
        content_type = content_type_header or _RAW_LANGUAGES.get(language) or _guess_raw(body.get("raw"))
    elif mode == "urlencoded":
        content_type = "application/x-www-form-urlencoded"
    elif mode == "formdata":
        content_type = "multipart/form-data"
    else:
        return None
    return RequestBodyDef(content_type=content_type, content_types=(content_type,))


def _guess_raw(raw: Any) -> str:
    if isinstance(raw, str) and raw.strip():
        try:
            json.loads(raw)
            return "application/json"
        except ValueError:
            pass
    return "text/plain"


def _server(url: dict, variables: dict[str, str]) -> str | None:
    host = url.get("host") or []
    if isinstance(host, str):
        host = [host]
    if not host:
        return None
    joined = ".".join(str(h) for h in host)
    match = _TEMPLATE_VAR.match(joined)
    if match:
        # {{baseUrl}} style hosts only resolve through collection variables
        resolved = variables.get(match.group(1))
        return resolved.rstrip("/") if resolved else None
    if "{{" in joined:
        return None
    protocol = url.get("protocol") or "https"
    port = f":{url['port']}" if url.get("port") else ""
    return f"{protocol}://{joined}{port}"


def _variables(raw: Any) -> dict[str, str]:
    if not isinstance(raw, list):
        return {}
    return {v["key"]: str(v.get("value", "")) for v in raw if isinstance(v, dict) and "key" in v}


def _description(obj: dict) -> str:
    desc = obj.get("description", "")
    if isinstance(desc, dict):
        return str(desc.get("content", ""))
    return str(desc or "")
