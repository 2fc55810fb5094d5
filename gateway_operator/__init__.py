"""
Package exports
"""

# Local
from . import config, constants, status
from .controllers import (
    ControlPlaneController,
    Controller,
    DataPlaneController,
    GatewayController,
)
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_precondition
from .reconcile import ReconcileManager, ReconciliationResult
from .session import Session
from .watch import WatchManager
