from clipworks.models.base import Base
from clipworks.models.work_item import WorkItem

__all__ = [
    "Base",
    "WorkItem",
]
