"""OpenAPI 3.x document parser.

Parses OpenAPI 3.x documents into a SpecDocument. Swagger 2.0 is detected
and rejected as an unsupported version.
"""

from typing import Any
from uuid import uuid4

from api_workbench.catalog.base import (
    DEFAULT_STYLES,
    Operation,
    ParameterDef,
    RequestBodyDef,
    SpecDocument,
    is_json_media_type,
)
from api_workbench.catalog.schema import SchemaResolver, unescape_pointer
from api_workbench.errors import MalformedDocument, UnresolvedReference, UnsupportedVersion

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

LOCATIONS = ("path", "query", "header", "cookie")


def parse_openapi(doc: dict, document_id: str | None = None) -> SpecDocument:
    """Parse a loaded OpenAPI 3.x document into a SpecDocument."""
    version = doc.get("openapi")
    if isinstance(version, (int, float)) and not isinstance(version, bool):
        # An unquoted `openapi: 3.1` loads as a float
        version = str(version)
    if not isinstance(version, str) or not version.startswith("3."):
        raise UnsupportedVersion(f"Unsupported OpenAPI version: {version!r}")

    components = _mapping(doc.get("components"), "components")
    resolver = SchemaResolver(_mapping(components.get("schemas"), "components.schemas"))
    resolver.resolve_components()

    document_id = document_id or uuid4().hex
    operations = []
    paths = _mapping(doc.get("paths"), "paths")

    for path, path_item in paths.items():
        path_item = _mapping(path_item, f"paths.{path}")
        shared = _parse_parameters(path_item.get("parameters"), components, resolver)

        for method, operation in path_item.items():
            if method.lower() not in HTTP_METHODS:
                continue
            operation = _mapping(operation, f"paths.{path}.{method}")
            own = _parse_parameters(operation.get("parameters"), components, resolver)

            operations.append(
                Operation(
                    method=method.upper(),
                    path=path,
                    summary=operation.get("summary") or "",
                    description=operation.get("description") or "",
                    operation_id=operation.get("operationId"),
                    tags=tuple(operation.get("tags") or ()),
                    parameters=_merge_parameters(shared, own),
                    request_body=_parse_request_body(
                        operation.get("requestBody"), components, resolver
                    ),
                    document_id=document_id,
                )
            )

    info = _mapping(doc.get("info"), "info")
    return SpecDocument(
        document_id=document_id,
        source_format="openapi",
        version=version,
        title=str(info.get("title") or ""),
        servers=_parse_servers(doc.get("servers")),
        operations=tuple(operations),
        schemas=resolver.arena(),
    )


def _parse_parameters(
    params: Any, components: dict, resolver: SchemaResolver
) -> list[ParameterDef]:
    if params is None:
        return []
    if not isinstance(params, list):
        raise MalformedDocument("parameters must be a list")

    result = []
    for raw in params:
        p = _deref(raw, components, "parameters")
        name = p.get("name")
        location = p.get("in")
        if not isinstance(name, str) or not name:
            raise MalformedDocument("Parameter without a name")
        if location not in LOCATIONS:
            raise MalformedDocument(f"Parameter {name!r} has unsupported location {location!r}")

        schema = p.get("schema")
        if schema is None:
            # Parameters may describe themselves through a single-entry content map
            for media in (p.get("content") or {}).values():
                schema = (media or {}).get("schema")
                break

        example = p.get("example")
        if example is None and isinstance(schema, dict):
            example = schema.get("example")

        result.append(
            ParameterDef(
                name=name,
                location=location,
                required=True if location == "path" else bool(p.get("required", False)),
                schema_handle=resolver.resolve(schema if schema is not None else {}),
                style=p.get("style") or DEFAULT_STYLES[location],
                explode=bool(p.get("explode", False)),
                description=p.get("description") or "",
                example=example,
            )
        )
    return result


def _merge_parameters(
    shared: list[ParameterDef], own: list[ParameterDef]
) -> tuple[ParameterDef, ...]:
    """Operation-level parameters override path-level ones with the same name and location."""
    overridden = {(p.name, p.location) for p in own}
    merged = [p for p in shared if (p.name, p.location) not in overridden]
    return tuple(merged + own)


def _parse_request_body(
    body: Any, components: dict, resolver: SchemaResolver
) -> RequestBodyDef | None:
    if body is None:
        return None
    body = _deref(body, components, "requestBodies")
    content = _mapping(body.get("content"), "requestBody.content")
    if not content:
        return None

    content_types = tuple(content)
    preferred = next((ct for ct in content_types if is_json_media_type(ct)), content_types[0])
    schema = (content[preferred] or {}).get("schema")

    return RequestBodyDef(
        content_type=preferred,
        content_types=content_types,
        schema_handle=resolver.resolve(schema) if schema is not None else None,
        required=bool(body.get("required", False)),
    )


def _parse_servers(servers: Any) -> tuple[str, ...]:
    if not isinstance(servers, list):
        return ()
    result = []
    for server in servers:
        if not isinstance(server, dict) or not isinstance(server.get("url"), str):
            continue
        url = server["url"]
        for var_name, var in (server.get("variables") or {}).items():
            if isinstance(var, dict) and "default" in var:
                url = url.replace("{" + var_name + "}", str(var["default"]))
        result.append(url)
    return tuple(result)


def _deref(obj: Any, components: dict, section: str) -> dict:
    """Follow local ``$ref`` links into ``components.<section>``."""
    prefix = f"#/components/{section}/"
    seen = set()
    while isinstance(obj, dict) and "$ref" in obj:
        ref = obj["$ref"]
        if not isinstance(ref, str) or not ref.startswith(prefix):
            raise UnresolvedReference(str(ref))
        if ref in seen:
            raise MalformedDocument(f"Reference cycle through {ref}")
        seen.add(ref)
        target = _mapping(components.get(section), f"components.{section}").get(
            unescape_pointer(ref[len(prefix):])
        )
        if target is None:
            raise UnresolvedReference(ref)
        obj = target
    return _mapping(obj, section)


def _mapping(value: Any, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedDocument(f"{where} must be a mapping")
    return value
