"""
Event routing, work queues and the threads that drive reconciles
"""

# Local
from .filters import (
    Filter,
    GatewayClassMatchesController,
    GatewayConfigurationMatchesController,
    GatewayHasMatchingGatewayClass,
    ManagedByLabel,
    OwnedByKind,
)
from .router import EventRouter, Route
from .timer import TimerThread
from .work_queue import WorkQueue
from .watch_manager import WatchManager, WatchThread
