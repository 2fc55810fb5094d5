"""
Generator for the TLS secret securing a data plane's admin API
"""

# Local
from .. import constants
from ..api import DataPlane
from .tls import make_tls_secret_data


def secret_match_labels(state: str) -> dict:
    return {
        constants.MANAGED_BY_LABEL: constants.MANAGED_BY_DATA_PLANE,
        constants.GENERATION_STATE_LABEL: state,
    }


def generate_tls_secret(data_plane: DataPlane, state: str) -> dict:
    """Generate a TLS secret with a fresh self-signed certificate valid for
    every service in the data plane's namespace
    """
    namespace = data_plane.namespace
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/tls",
        "metadata": {
            "generateName": f"dataplane-{data_plane.name}-",
            "namespace": namespace,
            "labels": secret_match_labels(state),
        },
        "data": make_tls_secret_data(
            common_name=f"{data_plane.name}.{namespace}",
            san_list=[
                f"{data_plane.name}.{namespace}",
                f"*.{namespace}.svc",
                f"*.{namespace}.svc.cluster.local",
            ],
        ),
    }
