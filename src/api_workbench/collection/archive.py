"""Workspace archives: the API document plus its collection in one zip.

``read_archive`` validates the whole archive (structure, manifest, spec and
collection) before returning, so callers can swap state in one step or not
at all.
"""

import io
import json
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import PurePosixPath

from api_workbench.catalog import SpecDocument, parse_document
from api_workbench.collection.store import CollectionStore
from api_workbench.errors import (
    ArchiveError,
    CollectionImportError,
    ImportReason,
    ParseError,
)
from api_workbench.log import get_logger

logger = get_logger(__name__)

ARCHIVE_FORMAT = "api-workbench.workspace"
ARCHIVE_VERSION = 1
MANIFEST_MEMBER = "manifest.json"
COLLECTION_MEMBER = "collection.json"
DEFAULT_SPEC_NAME = "openapi.yaml"
MAX_MEMBER_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class WorkspaceArchive:
    spec_source: bytes | None
    spec_name: str | None
    document: SpecDocument | None
    store: CollectionStore


def export_archive(
    spec_source: bytes | None,
    spec_name: str | None,
    store: CollectionStore,
) -> bytes:
    """Package the document bytes and the collection into a zip archive."""
    spec_member = None
    if spec_source is not None:
        spec_member = "spec/" + (PurePosixPath(spec_name or "").name or DEFAULT_SPEC_NAME)

    manifest = {
        "format": ARCHIVE_FORMAT,
        "version": ARCHIVE_VERSION,
        "spec": spec_member,
        "collection": COLLECTION_MEMBER,
    }

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(MANIFEST_MEMBER, json.dumps(manifest, indent=2))
        if spec_member is not None:
            zf.writestr(spec_member, spec_source)
        zf.writestr(COLLECTION_MEMBER, store.export())
    return buffer.getvalue()


def read_archive(data: bytes) -> WorkspaceArchive:
    """Validate and unpack an archive produced by ``export_archive``."""
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, ValueError) as e:
        raise ArchiveError(ImportReason.MALFORMED, f"Not a zip archive: {e}") from e

    with zf:
        manifest = _read_manifest(zf)
        spec_member = manifest.get("spec")
        collection_member = manifest.get("collection") or COLLECTION_MEMBER

        spec_source = _read_member(zf, spec_member) if spec_member else None
        collection_source = _read_member(zf, collection_member)

    document = None
    if spec_source is not None:
        try:
            document = parse_document(spec_source)
        except ParseError as e:
            raise ArchiveError(ImportReason.INVALID_SPEC, f"Archived document is invalid: {e}") from e

    try:
        store = CollectionStore.load(collection_source)
    except CollectionImportError as e:
        reason = (
            ImportReason.INCOMPATIBLE_VERSION
            if e.reason == ImportReason.INCOMPATIBLE_VERSION
            else ImportReason.INVALID_COLLECTION
        )
        raise ArchiveError(reason, f"Archived collection is invalid: {e}") from e

    logger.debug(
        "archive_read",
        spec=spec_member,
        operations=len(document.operations) if document else 0,
        history=len(store),
    )
    return WorkspaceArchive(
        spec_source=spec_source,
        spec_name=PurePosixPath(spec_member).name if spec_member else None,
        document=document,
        store=store,
    )


def _read_manifest(zf: zipfile.ZipFile) -> dict:
    raw = _read_member(zf, MANIFEST_MEMBER)
    try:
        manifest = json.loads(raw)
    except ValueError as e:
        raise ArchiveError(ImportReason.MALFORMED, f"Manifest is not valid JSON: {e}") from e

    if not isinstance(manifest, dict) or manifest.get("format") != ARCHIVE_FORMAT:
        raise ArchiveError(ImportReason.MALFORMED, "Not an api-workbench workspace archive")
    if manifest.get("version") != ARCHIVE_VERSION:
        raise ArchiveError(
            ImportReason.INCOMPATIBLE_VERSION,
            f"Archive version {manifest.get('version')!r} is not supported "
            f"(expected {ARCHIVE_VERSION})",
        )
    for key in ("spec", "collection"):
        if manifest.get(key) is not None and not isinstance(manifest[key], str):
            raise ArchiveError(ImportReason.MALFORMED, f"Manifest field {key!r} must be a string")
    return manifest


def _read_member(zf: zipfile.ZipFile, name: str) -> bytes:
    try:
        info = zf.getinfo(name)
    except KeyError:
        raise ArchiveError(ImportReason.MISSING_MEMBER, f"Archive has no {name}") from None
    if info.file_size > MAX_MEMBER_BYTES:
        raise ArchiveError(ImportReason.MALFORMED, f"{name} is larger than {MAX_MEMBER_BYTES} bytes")
    try:
        return zf.read(info)
    except (zipfile.BadZipFile, zlib.error, OSError) as e:
        raise ArchiveError(ImportReason.MALFORMED, f"Could not read {name}: {e}") from e
