import io
import json
import zipfile
from pathlib import Path

import pytest

from api_workbench.collection import CollectionStore, export_archive, read_archive
from api_workbench.errors import ArchiveError, ImportReason
from api_workbench.execution import Response
from api_workbench.request import RequestDescriptor

FIXTURES = Path(__file__).parent / "fixtures"


def _store() -> CollectionStore:
    store = CollectionStore()
    store.record(
        RequestDescriptor(method="GET", url="https://api.example.com/pets"),
        Response(status_code=200, body=b"[]", elapsed=0.02),
    )
    return store


def _zip(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def _manifest(**overrides) -> bytes:
    manifest = {
        "format": "api-workbench.workspace",
        "version": 1,
        "spec": "spec/petstore.yaml",
        "collection": "collection.json",
    }
    manifest.update(overrides)
    return json.dumps(manifest).encode()


class TestArchive:
    def test_round_trip(self):
        spec = (FIXTURES / "petstore.yaml").read_bytes()
        store = _store()
        archive = read_archive(export_archive(spec, "petstore.yaml", store))
        assert archive.spec_source == spec
        assert archive.spec_name == "petstore.yaml"
        assert archive.document.title == "Petstore"
        assert archive.store == store

    def test_archive_without_document(self):
        archive = read_archive(export_archive(None, None, _store()))
        assert archive.document is None
        assert archive.spec_source is None
        assert len(archive.store) == 1

    def test_spec_name_is_reduced_to_a_file_name(self):
        data = export_archive(b"openapi: 3.0.0\ninfo: {title: t}\npaths: {}\n", "../../etc/api.yaml", CollectionStore())
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert "spec/api.yaml" in zf.namelist()

    def test_not_a_zip(self):
        with pytest.raises(ArchiveError) as exc:
            read_archive(b"plain text")
        assert exc.value.reason == ImportReason.MALFORMED

    def test_missing_manifest(self):
        with pytest.raises(ArchiveError) as exc:
            read_archive(_zip({"collection.json": CollectionStore().export()}))
        assert exc.value.reason == ImportReason.MISSING_MEMBER

    def test_wrong_archive_version(self):
        data = _zip({"manifest.json": _manifest(version=7), "collection.json": CollectionStore().export()})
        with pytest.raises(ArchiveError) as exc:
            read_archive(data)
        assert exc.value.reason == ImportReason.INCOMPATIBLE_VERSION

    def test_missing_spec_member(self):
        data = _zip({"manifest.json": _manifest(), "collection.json": CollectionStore().export()})
        with pytest.raises(ArchiveError) as exc:
            read_archive(data)
        assert exc.value.reason == ImportReason.MISSING_MEMBER

    def test_invalid_spec(self):
        data = _zip(
            {
                "manifest.json": _manifest(),
                "spec/petstore.yaml": b'swagger: "2.0"\n',
                "collection.json": CollectionStore().export(),
            }
        )
        with pytest.raises(ArchiveError) as exc:
            read_archive(data)
        assert exc.value.reason == ImportReason.INVALID_SPEC

    def test_invalid_collection(self):
        data = _zip({"manifest.json": _manifest(spec=None), "collection.json": b"[]"})
        with pytest.raises(ArchiveError) as exc:
            read_archive(data)
        assert exc.value.reason == ImportReason.INVALID_COLLECTION

    def test_collection_version_mismatch_is_reported(self):
        collection = json.loads(CollectionStore().export())
        collection["version"] = 2
        data = _zip({"manifest.json": _manifest(spec=None), "collection.json": json.dumps(collection).encode()})
        with pytest.raises(ArchiveError) as exc:
            read_archive(data)
        assert exc.value.reason == ImportReason.INCOMPATIBLE_VERSION
