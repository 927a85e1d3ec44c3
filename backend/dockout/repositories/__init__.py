# Repository Layer — Data Access (Repository Pattern, GoF)
from dockout.repositories.base import BaseRepository
from dockout.repositories.picking_log_repository import PickingLogRepository

__all__ = [
    "BaseRepository",
    "PickingLogRepository",
]
