"""Schema nodes and the arena that owns them.

Schemas are stored once in a flat arena and referenced by integer handle.
A named component resolves to exactly one ``RefSchema`` node, so every
operation that mentions ``#/components/schemas/Pet`` shares the same node.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from api_workbench.errors import MalformedDocument, UnresolvedReference

SCHEMA_REF_PREFIX = "#/components/schemas/"

PRIMITIVE_TYPES = ("string", "integer", "number", "boolean")


class PrimitiveSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["primitive"] = "primitive"
    type: Literal["string", "integer", "number", "boolean"]
    format: str | None = None
    enum: tuple[Any, ...] | None = None


class ObjectSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["object"] = "object"
    properties: dict[str, int] = {}
    required: tuple[str, ...] = ()


class ArraySchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["array"] = "array"
    items: int


class RefSchema(BaseModel):
    """A named component; ``target`` is the handle of its definition."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["ref"] = "ref"
    name: str
    target: int


class CyclicSchema(BaseModel):
    """Marks a reference back into a component still being resolved."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cyclic"] = "cyclic"
    name: str


class AnySchema(BaseModel):
    """Untyped or composed (allOf/oneOf/anyOf) schema, left unresolved."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["any"] = "any"


Schema = Annotated[
    Union[PrimitiveSchema, ObjectSchema, ArraySchema, RefSchema, CyclicSchema, AnySchema],
    Field(discriminator="kind"),
]


class SchemaArena(BaseModel):
    """Immutable store of schema nodes addressed by handle."""

    model_config = ConfigDict(frozen=True)

    nodes: tuple[Schema, ...] = ()
    names: dict[str, int] = {}

    def get(self, handle: int) -> Schema:
        return self.nodes[handle]

    def resolve(self, handle: int) -> Schema:
        """Follow ref links until a non-ref node is reached."""
        node = self.nodes[handle]
        # A ref's target is always added before the ref itself, so this ends.
        while isinstance(node, RefSchema):
            node = self.nodes[node.target]
        return node

    def named(self, name: str) -> Schema:
        return self.nodes[self.names[name]]

    def describe(self, handle: int) -> str:
        """Short type label, e.g. ``integer`` or ``array<Pet>``."""
        node = self.nodes[handle]
        if isinstance(node, RefSchema):
            return node.name
        if isinstance(node, PrimitiveSchema):
            return node.type
        if isinstance(node, ArraySchema):
            return f"array<{self.describe(node.items)}>"
        if isinstance(node, ObjectSchema):
            return "object"
        if isinstance(node, CyclicSchema):
            return f"cyclic<{node.name}>"
        if isinstance(node, AnySchema):
            return "any"
        raise TypeError(f"Unhandled schema kind: {node.kind}")


class SchemaResolver:
    """Builds a SchemaArena from raw component and inline schemas.

    ``_in_progress`` holds the component names on the current resolution
    path; meeting one of them again yields a CyclicSchema node instead of
    recursing.
    """

    def __init__(self, components: dict | None = None):
        self._components = components or {}
        self._nodes: list = []
        self._named: dict[str, int] = {}
        self._cyclic: dict[str, int] = {}
        self._in_progress: list[str] = []

    def resolve(self, raw: Any) -> int:
        if not isinstance(raw, dict):
            raise MalformedDocument(f"Schema must be a mapping, got {type(raw).__name__}")

        if "$ref" in raw:
            return self.resolve_ref(raw["$ref"])

        schema_type = raw.get("type")
        if isinstance(schema_type, list):
            # OpenAPI 3.1 style: ["string", "null"]
            non_null = [t for t in schema_type if t != "null"]
            schema_type = non_null[0] if len(non_null) == 1 else None

        if schema_type in PRIMITIVE_TYPES:
            enum = raw.get("enum")
            return self._add(
                PrimitiveSchema(
                    type=schema_type,
                    format=raw.get("format"),
                    enum=tuple(enum) if isinstance(enum, list) else None,
                )
            )

        if schema_type == "array":
            items = raw.get("items")
            item_handle = self.resolve(items) if items else self._add(AnySchema())
            return self._add(ArraySchema(items=item_handle))

        if schema_type == "object" or (schema_type is None and "properties" in raw):
            properties = {}
            for prop_name, prop_schema in (raw.get("properties") or {}).items():
                properties[prop_name] = self.resolve(prop_schema)
            return self._add(
                ObjectSchema(
                    properties=properties,
                    required=tuple(raw.get("required") or ()),
                )
            )

        return self._add(AnySchema())

    def resolve_ref(self, ref: Any) -> int:
        if not isinstance(ref, str) or not ref.startswith(SCHEMA_REF_PREFIX):
            raise UnresolvedReference(str(ref))
        name = unescape_pointer(ref[len(SCHEMA_REF_PREFIX):])
        return self.resolve_name(name)

    def resolve_name(self, name: str) -> int:
        if name in self._named:
            return self._named[name]
        if name in self._in_progress:
            if name not in self._cyclic:
                self._cyclic[name] = self._add(CyclicSchema(name=name))
            return self._cyclic[name]
        if name not in self._components:
            raise UnresolvedReference(SCHEMA_REF_PREFIX + name)

        self._in_progress.append(name)
        try:
            target = self.resolve(self._components[name])
        finally:
            self._in_progress.pop()
        handle = self._add(RefSchema(name=name, target=target))
        self._named[name] = handle
        return handle

    def resolve_components(self) -> None:
        """Register every component schema, in declaration order."""
        for name in self._components:
            self.resolve_name(name)

    def arena(self) -> SchemaArena:
        return SchemaArena(nodes=tuple(self._nodes), names=dict(self._named))

    def _add(self, node) -> int:
        self._nodes.append(node)
        return len(self._nodes) - 1


def unescape_pointer(token: str) -> str:
    """Undo JSON-pointer escaping (``~1`` is ``/``, ``~0`` is ``~``)."""
    return token.replace("~1", "/").replace("~0", "~")
