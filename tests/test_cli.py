import json
from pathlib import Path
from unittest.mock import patch

import httpx
from click.testing import CliRunner

from api_workbench.cli import _parse_headers, _parse_params, main
from api_workbench.collection import CollectionStore
from api_workbench.execution import Executor

FIXTURES = Path(__file__).parent / "fixtures"
PETSTORE = str(FIXTURES / "petstore.yaml")


def _echo(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        content=json.dumps({"url": str(request.url), "auth": request.headers.get("authorization")}).encode(),
        headers={"Content-Type": "application/json"},
    )


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


def _with_transport(handler):
    """Route every Executor the CLI creates through a mock transport."""
    return patch(
        "api_workbench.workspace.Executor",
        side_effect=lambda settings: Executor(settings, transport=httpx.MockTransport(handler)),
    )


class TestCliOperations:
    def test_lists_operations(self):
        result = CliRunner().invoke(main, ["operations", PETSTORE])
        assert result.exit_code == 0
        assert "Petstore (5 operations)" in result.output
        assert "GET     /pets  List all pets" in result.output
        assert "DELETE  /pets/{id}" in result.output

    def test_unsupported_document(self, tmp_path):
        doc = tmp_path / "old.yaml"
        doc.write_text('swagger: "2.0"\n')
        result = CliRunner().invoke(main, ["operations", str(doc)])
        assert result.exit_code == 1
        assert "not supported" in result.output

    def test_show_operation(self):
        result = CliRunner().invoke(main, ["show", PETSTORE, "get", "/pets"])
        assert result.exit_code == 0
        assert "query  limit: integer (optional, style=form)" in result.output
        assert "tags: array<string>" in result.output

    def test_show_body(self):
        result = CliRunner().invoke(main, ["show", PETSTORE, "POST", "/pets"])
        assert "body   application/json (required)" in result.output

    def test_show_unknown_operation(self):
        result = CliRunner().invoke(main, ["show", PETSTORE, "PUT", "/pets"])
        assert result.exit_code == 1
        assert "No operation PUT /pets" in result.output


class TestCliCall:
    def test_call_prints_body_and_records(self, tmp_path):
        collection = tmp_path / "collection.json"
        with _with_transport(_echo):
            result = CliRunner().invoke(main, [
                "call", PETSTORE, "GET", "/pets/{id}",
                "-p", "id=42",
                "--bearer", "t0k",
                "--collection", str(collection),
                "--label", "first",
            ])

        assert result.exit_code == 0, result.output
        assert "https://api.example.com/pets/42" in result.output
        assert "Bearer t0k" in result.output
        store = CollectionStore.load(collection.read_bytes())
        assert len(store) == 1
        assert store.get(0).label == "first"

    def test_call_with_body_and_headers(self, tmp_path):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            seen["trace"] = request.headers.get("x-trace")
            return httpx.Response(201)

        body_file = tmp_path / "pet.json"
        body_file.write_text('{"name": "Rex"}')
        with _with_transport(handler):
            result = CliRunner().invoke(main, [
                "call", PETSTORE, "POST", "/pets",
                "--body-file", str(body_file),
                "-H", "X-Trace: abc",
                "-i",
            ])

        assert result.exit_code == 0, result.output
        assert "HTTP/1.1 201 Created" in result.output
        assert seen == {"body": b'{"name": "Rex"}', "trace": "abc"}

    def test_binding_error_exits_1(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/pets/{id}", "-p", "id=abc"])
        assert result.exit_code == 1
        assert "[id]" in result.output

    def test_bad_param_syntax(self):
        result = CliRunner().invoke(main, ["call", PETSTORE, "GET", "/pets", "-p", "limit"])
        assert result.exit_code == 2
        assert "name=value" in result.output

    def test_execution_failure_exits_2(self, tmp_path):
        collection = tmp_path / "collection.json"
        with _with_transport(_refuse):
            result = CliRunner().invoke(main, [
                "call", PETSTORE, "GET", "/pets",
                "--collection", str(collection),
            ])

        assert result.exit_code == 2
        assert "FAILED (connection_refused)" in result.output
        store = CollectionStore.load(collection.read_bytes())
        assert store.get(0).result.outcome == "failure"

    def test_save_and_run_saved(self, tmp_path):
        collection = tmp_path / "collection.json"
        with _with_transport(_echo):
            runner = CliRunner()
            runner.invoke(main, [
                "call", PETSTORE, "GET", "/pets/{id}",
                "-p", "id=1",
                "--collection", str(collection),
                "--save", "one pet",
            ])
            saved = runner.invoke(main, ["saved", str(collection)])
            rerun = runner.invoke(main, [
                "run-saved", PETSTORE, str(collection), "one pet", "-p", "id=7",
            ])

        assert "(no folder):" in saved.output
        assert "one pet  GET /pets/{id}" in saved.output
        assert rerun.exit_code == 0, rerun.output
        assert "https://api.example.com/pets/7" in rerun.output
        assert len(CollectionStore.load(collection.read_bytes())) == 2

    def test_run_saved_unknown_name(self, tmp_path):
        collection = tmp_path / "collection.json"
        collection.write_bytes(CollectionStore().export())
        result = CliRunner().invoke(main, ["run-saved", PETSTORE, str(collection), "ghost"])
        assert result.exit_code == 1
        assert "ghost" in result.output


class TestCliImportRequests:
    def test_import_and_run_postman_request(self, tmp_path):
        postman = str(FIXTURES / "sample.postman.json")
        collection = tmp_path / "collection.json"
        with _with_transport(_echo):
            runner = CliRunner()
            imported = runner.invoke(main, ["import-requests", postman, str(collection)])
            listing = runner.invoke(main, ["saved", str(collection)])
            run = runner.invoke(main, ["run-saved", postman, str(collection), "Get user"])

        assert imported.exit_code == 0, imported.output
        assert "Imported 4 requests" in imported.output
        assert "Users:" in listing.output
        assert "  Login  POST /api/login" in listing.output
        assert run.exit_code == 0, run.output
        assert "https://users.example.com/api/users/42" in run.output


class TestCliHistory:
    def _record(self, collection: Path):
        with _with_transport(_echo):
            CliRunner().invoke(main, [
                "call", PETSTORE, "GET", "/pets", "-p", "limit=2",
                "--collection", str(collection),
            ])

    def test_history_and_replay(self, tmp_path):
        collection = tmp_path / "collection.json"
        self._record(collection)

        listing = CliRunner().invoke(main, ["history", str(collection)])
        assert "GET     https://api.example.com/pets?limit=2  -> 200" in listing.output

        with _with_transport(_echo):
            replay = CliRunner().invoke(main, ["replay", str(collection), "0"])
        assert replay.exit_code == 0, replay.output
        assert len(CollectionStore.load(collection.read_bytes())) == 2

    def test_replay_bad_index(self, tmp_path):
        collection = tmp_path / "collection.json"
        self._record(collection)
        result = CliRunner().invoke(main, ["replay", str(collection), "9"])
        assert result.exit_code == 1
        assert "No history entry 9" in result.output

    def test_forget(self, tmp_path):
        collection = tmp_path / "collection.json"
        self._record(collection)
        result = CliRunner().invoke(main, ["forget", str(collection), "0"])
        assert result.exit_code == 0
        assert len(CollectionStore.load(collection.read_bytes())) == 0

    def test_incompatible_collection(self, tmp_path):
        collection = tmp_path / "collection.json"
        collection.write_text('{"format": "api-workbench.collection", "version": 5}')
        result = CliRunner().invoke(main, ["history", str(collection)])
        assert result.exit_code == 1
        assert "not supported" in result.output


class TestCliArchive:
    def test_pack_and_unpack(self, tmp_path):
        collection = tmp_path / "collection.json"
        with _with_transport(_echo):
            CliRunner().invoke(main, [
                "call", PETSTORE, "GET", "/pets", "--collection", str(collection),
            ])

        archive = tmp_path / "workspace.zip"
        packed = CliRunner().invoke(main, ["pack", PETSTORE, str(collection), "-o", str(archive)])
        assert packed.exit_code == 0, packed.output
        assert archive.exists()

        out_dir = tmp_path / "restored"
        unpacked = CliRunner().invoke(main, ["unpack", str(archive), "-d", str(out_dir)])
        assert unpacked.exit_code == 0, unpacked.output
        assert (out_dir / "petstore.yaml").read_bytes() == (FIXTURES / "petstore.yaml").read_bytes()
        assert CollectionStore.load((out_dir / "collection.json").read_bytes()) == CollectionStore.load(
            collection.read_bytes()
        )

    def test_unpack_rejects_garbage(self, tmp_path):
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"nope")
        result = CliRunner().invoke(main, ["unpack", str(archive), "-d", str(tmp_path / "out")])
        assert result.exit_code == 1
        assert not (tmp_path / "out").exists()


class TestParsing:
    def test_parse_params_collects_repeats(self):
        assert _parse_params(("a=1", "b=x=y", "a=2")) == {"a": ["1", "2"], "b": "x=y"}

    def test_parse_headers(self):
        assert _parse_headers(("X-A: 1", "Accept:text/plain")) == [("X-A", "1"), ("Accept", "text/plain")]
