"""
ClusterRole rule sets for each supported range of control plane versions. Each
range builds on the rules of the one before it.
"""

# Standard
from typing import List

CORE = ""
NETWORKING = "networking.k8s.io"
GATEWAY_API = "gateway.networking.k8s.io"
KONG_CONFIGURATION = "configuration.konghq.com"
COORDINATION = "coordination.k8s.io"
DISCOVERY = "discovery.k8s.io"

READ = ["get", "list", "watch"]
STATUS_WRITE = ["get", "patch", "update"]


def _rule(api_group: str, resources: List[str], verbs: List[str]) -> dict:
    return {"apiGroups": [api_group], "resources": resources, "verbs": verbs}


def rules_ge2_1_lt2_2() -> List[dict]:
    return [
        _rule(CORE, ["endpoints", "nodes", "pods", "secrets", "services"], READ),
        _rule(CORE, ["namespaces"], ["get", "list", "watch"]),
        _rule(CORE, ["events"], ["create", "patch"]),
        _rule(CORE, ["configmaps"], READ + ["create", "update"]),
        _rule(CORE, ["services/status"], STATUS_WRITE),
        _rule(NETWORKING, ["ingresses", "ingressclasses"], READ),
        _rule(NETWORKING, ["ingresses/status"], STATUS_WRITE),
        _rule(
            KONG_CONFIGURATION,
            [
                "kongclusterplugins",
                "kongconsumers",
                "kongingresses",
                "kongplugins",
                "tcpingresses",
                "udpingresses",
            ],
            READ,
        ),
        _rule(
            KONG_CONFIGURATION,
            [
                "kongclusterplugins/status",
                "kongconsumers/status",
                "kongplugins/status",
                "tcpingresses/status",
                "udpingresses/status",
            ],
            STATUS_WRITE,
        ),
        _rule(GATEWAY_API, ["gatewayclasses", "gateways", "httproutes"], READ),
        _rule(
            GATEWAY_API,
            ["gatewayclasses/status", "gateways/status", "httproutes/status"],
            STATUS_WRITE,
        ),
    ]


def rules_ge2_2_lt2_3() -> List[dict]:
    return rules_ge2_1_lt2_2() + [
        _rule(GATEWAY_API, ["tcproutes", "tlsroutes", "udproutes"], READ),
        _rule(
            GATEWAY_API,
            ["tcproutes/status", "tlsroutes/status", "udproutes/status"],
            STATUS_WRITE,
        ),
    ]


def rules_ge2_3_lt2_4() -> List[dict]:
    return rules_ge2_2_lt2_3() + [
        _rule(GATEWAY_API, ["referencegrants"], READ),
        _rule(GATEWAY_API, ["referencegrants/status"], ["get"]),
    ]


def rules_ge2_4_lt2_6() -> List[dict]:
    return rules_ge2_3_lt2_4() + [
        _rule(DISCOVERY, ["endpointslices"], READ),
        _rule(KONG_CONFIGURATION, ["ingressclassparameterses"], READ),
    ]


def rules_ge2_6() -> List[dict]:
    return rules_ge2_4_lt2_6() + [
        _rule(GATEWAY_API, ["grpcroutes"], READ),
        _rule(GATEWAY_API, ["grpcroutes/status"], STATUS_WRITE),
        _rule(KONG_CONFIGURATION, ["kongconsumergroups"], READ),
        _rule(KONG_CONFIGURATION, ["kongconsumergroups/status"], STATUS_WRITE),
        _rule(COORDINATION, ["leases"], READ + ["create", "update", "patch"]),
    ]
