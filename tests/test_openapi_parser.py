from pathlib import Path

import pytest

from api_workbench.catalog import parse_document
from api_workbench.catalog.detect import detect_format, load_document
from api_workbench.catalog.schema import (
    ArraySchema,
    CyclicSchema,
    ObjectSchema,
    PrimitiveSchema,
    RefSchema,
)
from api_workbench.errors import (
    MalformedDocument,
    OperationNotFound,
    ParseReason,
    UnresolvedReference,
    UnsupportedVersion,
)

FIXTURES = Path(__file__).parent / "fixtures"


def _petstore():
    return parse_document((FIXTURES / "petstore.yaml").read_bytes())


class TestDetectFormat:
    def test_detect_openapi_yaml(self):
        doc = load_document((FIXTURES / "petstore.yaml").read_bytes())
        assert detect_format(doc) == "openapi"

    def test_detect_swagger(self):
        assert detect_format({"swagger": "2.0"}) == "swagger"

    def test_detect_postman(self):
        doc = load_document((FIXTURES / "sample.postman.json").read_bytes())
        assert detect_format(doc) == "postman"

    def test_detect_unknown_format(self):
        assert detect_format({"title": "notes"}) == "unknown"

    def test_load_json(self):
        assert load_document(b'{"openapi": "3.0.0"}') == {"openapi": "3.0.0"}

    def test_load_strips_bom(self):
        assert load_document("\ufeffopenapi: 3.0.0\n".encode("utf-8")) == {"openapi": "3.0.0"}


class TestOpenApiParser:
    def test_operations_in_declaration_order(self):
        doc = _petstore()
        assert [(op.method, op.path) for op in doc.list_operations()] == [
            ("GET", "/pets"),
            ("POST", "/pets"),
            ("GET", "/pets/{id}"),
            ("DELETE", "/pets/{id}"),
            ("POST", "/nodes"),
        ]

    def test_document_metadata(self):
        doc = _petstore()
        assert doc.title == "Petstore"
        assert doc.version == "3.0.3"
        assert doc.source_format == "openapi"
        assert doc.servers == ("https://api.example.com", "https://eu.example.com/v2")

    def test_parse_get_pets(self):
        op = _petstore().get_operation("GET", "/pets")
        assert op.summary == "List all pets"
        assert op.operation_id == "listPets"
        assert op.tags == ("pets",)
        assert [p.name for p in op.parameters] == ["limit", "status", "tags"]
        limit = op.parameter("limit")
        assert limit.location == "query"
        assert limit.required is False
        assert limit.style == "form"
        assert limit.explode is False

    def test_parse_post_pets_has_body(self):
        doc = _petstore()
        op = doc.get_operation("POST", "/pets")
        assert op.request_body is not None
        assert op.request_body.content_type == "application/json"
        assert op.request_body.required is True
        pet = doc.schemas.resolve(op.request_body.schema_handle)
        assert isinstance(pet, ObjectSchema)
        assert set(pet.properties) == {"id", "name", "tag"}
        assert pet.required == ("name",)

    def test_path_level_parameter_ref(self):
        doc = _petstore()
        op = doc.get_operation("GET", "/pets/{id}")
        pet_id = op.parameter("id")
        assert pet_id.location == "path"
        assert pet_id.required is True
        assert pet_id.style == "simple"
        node = doc.schemas.resolve(pet_id.schema_handle)
        assert isinstance(node, PrimitiveSchema)
        assert node.type == "integer"
        # Shared by both operations on the path
        assert doc.get_operation("DELETE", "/pets/{id}").parameter("id") is not None

    def test_operation_parameter_overrides_path_parameter(self):
        raw = b"""
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /items/{id}:
    parameters:
      - {name: id, in: path, schema: {type: string}}
    get:
      parameters:
        - {name: id, in: path, schema: {type: integer}}
      responses: {}
"""
        doc = parse_document(raw)
        op = doc.get_operation("GET", "/items/{id}")
        assert len(op.parameters) == 1
        assert doc.schemas.resolve(op.parameters[0].schema_handle).type == "integer"

    def test_get_operation_is_case_insensitive_on_method(self):
        assert _petstore().get_operation("get", "/pets").method == "GET"

    def test_missing_operation(self):
        with pytest.raises(OperationNotFound):
            _petstore().get_operation("PUT", "/pets")

    def test_unquoted_version_number(self):
        doc = parse_document(b"openapi: 3.1\ninfo: {title: t}\npaths: {}\n")
        assert doc.version == "3.1"

    def test_each_parse_gets_a_new_document_id(self):
        assert _petstore().document_id != _petstore().document_id


class TestSchemaResolution:
    def test_shared_reference_is_one_node(self):
        doc = _petstore()
        body_handle = doc.get_operation("POST", "/pets").request_body.schema_handle
        assert body_handle == doc.schemas.names["Pet"]
        pets = doc.schemas.resolve(doc.schemas.names["Pets"])
        assert isinstance(pets, ArraySchema)
        assert pets.items == doc.schemas.names["Pet"]
        assert doc.schemas.describe(doc.schemas.names["Pets"]) == "array<Pet>"

    def test_self_reference_becomes_cyclic_marker(self):
        doc = _petstore()
        node_ref = doc.schemas.named("Node")
        assert isinstance(node_ref, RefSchema)
        node = doc.schemas.resolve(doc.schemas.names["Node"])
        nxt = doc.schemas.get(node.properties["next"])
        assert isinstance(nxt, CyclicSchema)
        assert nxt.name == "Node"

    def test_array_of_self_reference(self):
        doc = _petstore()
        node = doc.schemas.resolve(doc.schemas.names["Node"])
        children = doc.schemas.get(node.properties["children"])
        assert isinstance(children, ArraySchema)
        assert children.items == node.properties["next"]  # one marker per name
        assert doc.schemas.describe(node.properties["children"]) == "array<cyclic<Node>>"

    def test_mutual_recursion_terminates(self):
        raw = b"""
openapi: 3.1.0
info: {title: t, version: "1"}
paths: {}
components:
  schemas:
    A:
      type: object
      properties:
        b: {$ref: "#/components/schemas/B"}
    B:
      type: object
      properties:
        a: {$ref: "#/components/schemas/A"}
"""
        doc = parse_document(raw)
        a = doc.schemas.resolve(doc.schemas.names["A"])
        b = doc.schemas.resolve(a.properties["b"])
        assert isinstance(doc.schemas.get(b.properties["a"]), CyclicSchema)

    def test_openapi_31_nullable_type_list(self):
        raw = b"""
openapi: 3.1.0
info: {title: t, version: "1"}
paths:
  /x:
    get:
      parameters:
        - {name: q, in: query, schema: {type: [string, "null"]}}
      responses: {}
"""
        doc = parse_document(raw)
        param = doc.get_operation("GET", "/x").parameter("q")
        assert doc.schemas.resolve(param.schema_handle).type == "string"


class TestParseErrors:
    def test_unresolved_reference(self):
        raw = b"""
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /x:
    post:
      requestBody:
        content:
          application/json:
            schema: {$ref: "#/components/schemas/Missing"}
      responses: {}
"""
        with pytest.raises(UnresolvedReference) as exc:
            parse_document(raw)
        assert exc.value.name == "#/components/schemas/Missing"
        assert exc.value.reason == ParseReason.UNRESOLVED_REFERENCE

    def test_swagger_2_is_unsupported(self):
        with pytest.raises(UnsupportedVersion):
            parse_document(b'{"swagger": "2.0", "paths": {}}')

    def test_openapi_2_value_is_unsupported(self):
        with pytest.raises(UnsupportedVersion):
            parse_document(b'openapi: "2.0"\npaths: {}\n')

    def test_no_version_is_unsupported(self):
        with pytest.raises(UnsupportedVersion):
            parse_document(b"paths: {}\n")

    def test_invalid_yaml_is_malformed(self):
        with pytest.raises(MalformedDocument) as exc:
            parse_document(b"openapi: [3.0\n")
        assert exc.value.reason == ParseReason.MALFORMED

    def test_non_mapping_root_is_malformed(self):
        with pytest.raises(MalformedDocument):
            parse_document(b"- a\n- b\n")

    def test_binary_is_malformed(self):
        with pytest.raises(MalformedDocument):
            parse_document(b"\xff\xfe\x00bad")

    def test_parameter_without_location_is_malformed(self):
        raw = b"""
openapi: 3.0.0
info: {title: t, version: "1"}
paths:
  /x:
    get:
      parameters:
        - {name: q, in: body}
      responses: {}
"""
        with pytest.raises(MalformedDocument):
            parse_document(raw)
