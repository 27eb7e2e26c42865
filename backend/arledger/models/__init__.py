"""SQLAlchemy models package.

Models are imported here so they register with the metadata before
``init_db`` creates tables.
"""

from arledger.models.base import BaseModel
from arledger.models.saved_filter import SavedFilter

__all__ = [
    "BaseModel",
    "SavedFilter",
]
