from dockout.models.picking_log import PickingLog

__all__ = [
    "PickingLog",
]
