"""
Controllers for each custom resource kind managed by the operator
"""

# Local
from .base import Controller
from .controlplane import ControlPlaneController
from .dataplane import DataPlaneController
from .gateway import GatewayController
