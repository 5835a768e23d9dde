import pytest
from pydantic import TypeAdapter, ValidationError

from api_workbench.catalog import Operation, OperationRef, ParameterDef, SpecDocument
from api_workbench.catalog.base import is_json_media_type
from api_workbench.catalog.schema import (
    AnySchema,
    ArraySchema,
    CyclicSchema,
    ObjectSchema,
    PrimitiveSchema,
    RefSchema,
    SchemaArena,
)
from api_workbench.errors import BindingError, MissingRequired, NotFoundError, OperationNotFound
from api_workbench.execution import ExecutionResult, Failure, FailureKind, Response
from api_workbench.request import RequestDescriptor


def _arena() -> SchemaArena:
    return SchemaArena(
        nodes=(
            PrimitiveSchema(type="string"),  # 0
            ObjectSchema(properties={"name": 0}, required=("name",)),  # 1
            RefSchema(name="Pet", target=1),  # 2
            ArraySchema(items=2),  # 3
            CyclicSchema(name="Node"),  # 4
            AnySchema(),  # 5
        ),
        names={"Pet": 2},
    )


class TestSchemaArena:
    def test_resolve_follows_refs(self):
        arena = _arena()
        assert isinstance(arena.resolve(2), ObjectSchema)
        assert arena.named("Pet") == RefSchema(name="Pet", target=1)

    def test_describe(self):
        arena = _arena()
        assert arena.describe(0) == "string"
        assert arena.describe(3) == "array<Pet>"
        assert arena.describe(4) == "cyclic<Node>"
        assert arena.describe(5) == "any"

    def test_json_round_trip_keeps_node_kinds(self):
        arena = _arena()
        assert SchemaArena.model_validate_json(arena.model_dump_json()) == arena


class TestSpecDocument:
    def _document(self) -> SpecDocument:
        op = Operation(
            method="GET",
            path="/pets/{id}",
            parameters=(ParameterDef(name="id", location="path", required=True, schema_handle=0),),
            document_id="d1",
        )
        return SpecDocument(document_id="d1", operations=(op,), schemas=_arena())

    def test_lookup(self):
        doc = self._document()
        op = doc.get_operation("get", "/pets/{id}")
        assert op.ref == OperationRef(method="GET", path="/pets/{id}")
        assert str(op.ref) == "GET /pets/{id}"
        assert op.parameter("id").required is True
        assert op.parameter("nope") is None

    def test_not_found_is_a_lookup_error(self):
        with pytest.raises(LookupError):
            self._document().get_operation("POST", "/pets")
        assert issubclass(OperationNotFound, NotFoundError)

    def test_owns(self):
        doc = self._document()
        assert doc.owns(doc.operations[0])
        other = SpecDocument(document_id="d2")
        assert not other.owns(doc.operations[0])

    def test_operations_are_frozen(self):
        doc = self._document()
        with pytest.raises(ValidationError):
            doc.operations[0].path = "/other"


class TestRequestDescriptor:
    def test_binary_body_survives_json(self):
        req = RequestDescriptor(method="PUT", url="https://x.test/blob", body=b"\x00\x01\xfe\xff")
        assert RequestDescriptor.model_validate_json(req.model_dump_json()) == req

    def test_header_lookup(self):
        req = RequestDescriptor(method="GET", url="https://x.test", headers=(("Accept", "text/plain"),))
        assert req.header("accept") == "text/plain"
        assert req.header("missing") is None


class TestExecutionResult:
    def test_discriminated_union(self):
        adapter = TypeAdapter(ExecutionResult)
        failure = adapter.validate_python({"outcome": "failure", "kind": "timeout"})
        assert isinstance(failure, Failure)
        assert failure.kind == FailureKind.TIMEOUT
        response = adapter.validate_python({"outcome": "response", "status_code": 500, "elapsed": 0.1})
        assert isinstance(response, Response)
        assert not response.ok

    def test_response_text_replaces_bad_bytes(self):
        assert Response(status_code=200, body=b"ok \xff", elapsed=0).text() == "ok \ufffd"


class TestErrors:
    def test_binding_errors_carry_field(self):
        error = MissingRequired("limit")
        assert isinstance(error, BindingError)
        assert error.field == "limit"
        assert "limit" in str(error)


class TestMediaTypes:
    @pytest.mark.parametrize(
        "content_type, expected",
        [
            ("application/json", True),
            ("application/json; charset=utf-8", True),
            ("application/problem+json", True),
            ("text/json", False),
            (None, False),
        ],
    )
    def test_is_json_media_type(self, content_type, expected):
        assert is_json_media_type(content_type) is expected
