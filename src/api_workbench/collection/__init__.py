from api_workbench.collection.archive import WorkspaceArchive, export_archive, read_archive
from api_workbench.collection.models import HistoryEntry, SavedRequest
from api_workbench.collection.store import CollectionStore

__all__ = [
    "CollectionStore",
    "HistoryEntry",
    "SavedRequest",
    "WorkspaceArchive",
    "export_archive",
    "read_archive",
]
