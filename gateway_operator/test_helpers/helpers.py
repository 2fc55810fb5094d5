"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import copy
import inspect
import os
import uuid

# First Party
import alog

# Local
from gateway_operator import constants
from gateway_operator.api import wrap
from gateway_operator.config import library_config as config_detail_dict
from gateway_operator.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from gateway_operator.exceptions import assert_cluster
from gateway_operator.rollout import available_replicas
from gateway_operator.session import Session
from gateway_operator.utils import labels_match

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_NAMESPACE = "test"
TEST_GATEWAY_CLASS = "test-class"
TEST_CONFIGURATION = "test-configuration"
DATA_PLANE_IMAGE = "kong:3.4"
CONTROL_PLANE_IMAGE = "kong/kubernetes-ingress-controller:2.6.0"


## Config ######################################################################


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    yield

    # Revert to the old values
    for key in config_overrides:
        if key in old_vals:
            config_detail_dict[key] = old_vals[key]
        else:
            del config_detail_dict[key]


## Failure Injection ###########################################################


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        deploy_fail=False,
        disable_fail=False,
        get_state_fail=False,
        filter_fail=False,
        set_status_fail=False,
        watch_fail=False,
        auto_enable=True,
        resources=None,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        super().__init__(resources)
        self.deploy_fail = deploy_fail
        self.disable_fail = disable_fail
        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.set_status_fail = set_status_fail
        self.watch_fail = watch_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects, [])
        )

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def list_objs(self, kind, namespace=TEST_NAMESPACE, label_selector=None):
        return DryRunDeployManager.filter_objects_current_state(
            self, kind, namespace, label_selector=label_selector
        )[1]

    def mark_deployments_available(self, namespace=TEST_NAMESPACE, name_prefix=""):
        """Simulate the cluster bringing up every pod of the matching
        deployments
        """
        for deployment in self.list_objs("Deployment", namespace):
            name = deployment["metadata"]["name"]
            if not name.startswith(name_prefix):
                continue
            replicas = deployment["spec"].get("replicas", 1)
            DryRunDeployManager.set_status(
                self,
                "Deployment",
                name,
                namespace,
                {
                    "observedGeneration": deployment["metadata"]["generation"],
                    "replicas": replicas,
                    "readyReplicas": replicas,
                    "availableReplicas": replicas,
                },
            )


def count_active_endpoints(deploy_manager, service: dict) -> int:
    """The number of ready pods a service routes to: the available replicas of
    every deployment not marked for deletion whose pods carry all the labels of
    the service's selector
    """
    selector = service.get("spec", {}).get("selector") or {}
    if not selector:
        return 0
    success, deployments = deploy_manager.filter_objects_current_state(
        kind="Deployment",
        namespace=service.get("metadata", {}).get("namespace"),
        api_version=constants.DEPLOYMENT_API_VERSION,
    )
    assert_cluster(success, "Failed to list deployments")
    return sum(
        available_replicas(deployment)
        for deployment in deployments
        if not deployment.get("metadata", {}).get("deletionTimestamp")
        and labels_match(
            deployment.get("spec", {}).get("template", {}).get("metadata", {}).get("labels"),
            selector,
        )
    )


## Object Builders #############################################################


def make_gateway_class(
    name=TEST_GATEWAY_CLASS, controller_name=None, parameters_ref=None
) -> dict:
    spec = {"controllerName": controller_name or config_detail_dict.controller_name}
    if parameters_ref:
        spec["parametersRef"] = parameters_ref
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.GATEWAY_CLASS_KIND,
        "metadata": {"name": name},
        "spec": spec,
    }


def configuration_ref(name=TEST_CONFIGURATION, namespace=TEST_NAMESPACE) -> dict:
    ref = {
        "group": constants.GROUP,
        "kind": constants.GATEWAY_CONFIGURATION_KIND,
        "name": name,
    }
    if namespace:
        ref["namespace"] = namespace
    return ref


def make_gateway_configuration(
    name=TEST_CONFIGURATION,
    namespace=TEST_NAMESPACE,
    data_plane_options=None,
    control_plane_options=None,
) -> dict:
    spec = {}
    if data_plane_options is not None:
        spec["dataPlaneOptions"] = data_plane_options
    if control_plane_options is not None:
        spec["controlPlaneOptions"] = control_plane_options
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.GATEWAY_CONFIGURATION_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_gateway(
    name="test-gateway",
    namespace=TEST_NAMESPACE,
    class_name=TEST_GATEWAY_CLASS,
    options=None,
) -> dict:
    spec = {"className": class_name}
    if options is not None:
        spec["options"] = options
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.GATEWAY_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_data_plane(
    name="test-dataplane",
    namespace=TEST_NAMESPACE,
    replicas=1,
    image=DATA_PLANE_IMAGE,
    env=None,
    blue_green=False,
    promote=False,
) -> dict:
    container = {"name": constants.DATA_PLANE_CONTAINER_NAME, "image": image}
    if env:
        container["env"] = copy.deepcopy(env)
    deployment = {
        "replicas": replicas,
        "podTemplateSpec": {"spec": {"containers": [container]}},
    }
    if blue_green:
        deployment["rollout"] = {
            "strategy": {
                "blueGreen": {"promotion": {"strategy": constants.BREAK_BEFORE_MAKE}}
            }
        }
    metadata = {"name": name, "namespace": namespace}
    if promote:
        metadata["annotations"] = {
            constants.PROMOTE_WHEN_READY_ANNOTATION: constants.PROMOTE_WHEN_READY_VALUE
        }
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.DATA_PLANE_KIND,
        "metadata": metadata,
        "spec": {"deployment": deployment},
    }


def make_control_plane(
    name="test-controlplane",
    namespace=TEST_NAMESPACE,
    data_plane_name="test-dataplane",
    image=CONTROL_PLANE_IMAGE,
    replicas=1,
) -> dict:
    spec = {
        "deployment": {
            "replicas": replicas,
            "podTemplateSpec": {
                "spec": {
                    "containers": [
                        {"name": constants.CONTROL_PLANE_CONTAINER_NAME, "image": image}
                    ]
                }
            },
        }
    }
    if data_plane_name:
        spec["dataPlane"] = data_plane_name
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.CONTROL_PLANE_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


## Sessions ####################################################################


def setup_session(resource: dict, deploy_manager=None) -> Session:
    """Store the resource and open a session on its stored state"""
    deploy_manager = deploy_manager or MockDeployManager()
    resource = copy.deepcopy(resource)
    DryRunDeployManager.deploy(deploy_manager, [resource])
    current = DryRunDeployManager.get_object_current_state(
        deploy_manager,
        resource["kind"],
        resource["metadata"]["name"],
        resource["metadata"].get("namespace"),
        resource["apiVersion"],
    )[1]
    return Session(str(uuid.uuid4()), wrap(current), deploy_manager)


def refresh_session(session: Session) -> Session:
    """Open a new session on the latest stored state of the session's object"""
    current = session.deploy_manager.get_obj(
        session.kind, session.name, session.namespace
    )
    return Session(str(uuid.uuid4()), wrap(current), session.deploy_manager)
