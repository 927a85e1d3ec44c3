# Routers package — Thin Controllers (SRP / DIP)
from dockout.routers import (
    workflow,
    proxies,
    picking_logs,
)

__all__ = [
    "workflow",
    "proxies",
    "picking_logs",
]
