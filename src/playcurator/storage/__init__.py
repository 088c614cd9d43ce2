"""playcurator storage layer: async SQLite database for run logs and plans."""

from playcurator.storage.database import Database
from playcurator.storage.models import CurationLog, RunState

__all__ = [
    "CurationLog",
    "Database",
    "RunState",
]
