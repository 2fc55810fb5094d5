#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the gateway operator
"""

# Standard
from typing import Dict, List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import aconfig
import alog

# Local
from . import config
from .config import library_config
from .controllers import ControlPlaneController, DataPlaneController, GatewayController
from .deploy_manager import DeployManagerBase, DryRunDeployManager, OpenshiftDeployManager
from .watch import WatchManager

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(parser, config_obj=None, path=None) -> Dict[str, List[str]]:
    """Automatically add args for all elements of the library config"""
    path = path or []
    setters = {}
    config_obj = config_obj or library_config
    for key, val in config_obj.items():
        sub_path = path + [key]

        # If this is a nested arg, recurse
        if isinstance(val, aconfig.AttributeAccessDict):
            setters.update(
                add_library_config_args(parser, config_obj=val, path=sub_path)
            )
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name}",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)
        parser.add_argument(f"--{arg_name}", **kwargs)
        setters[dest_name] = sub_path
    return setters


def update_library_config(args, setters):
    """Update the library config values based on the parsed arguments"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        while len(config_path) > 1:
            config_obj = config_obj[config_path[0]]
            config_path = config_path[1:]
        config_obj[config_path[0]] = getattr(args, dest_name)


def parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
    """If given, this will parse all yaml files found in the given directory"""
    all_resources = []
    if resource_dir is not None:
        for fname in sorted(os.listdir(resource_dir)):
            if fname.endswith(".yaml") or fname.endswith(".yml"):
                resource_path = os.path.join(resource_dir, fname)
                log.debug3("Reading resource file [%s]", resource_path)
                with open(resource_path, encoding="utf-8") as handle:
                    all_resources.extend(
                        resource for resource in yaml.safe_load_all(handle) if resource
                    )
    return all_resources


def setup_deploy_manager(resource_dir: Optional[str] = None) -> DeployManagerBase:
    if config.dry_run:
        log.info("Running DRY RUN")
        return DryRunDeployManager(resources=parse_resource_dir(resource_dir))
    assert resource_dir is None, "Can only specify --resource_dir with dry run"
    return OpenshiftDeployManager()


## Main ########################################################################


def main():
    """Run the gateway operator until interrupted"""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--resource_dir",
        "-r",
        default=None,
        help="(dry run) Path to a directory of yaml files that should exist in the cluster",
    )
    library_args = parser.add_argument_group("Library Configuration")
    setters = add_library_config_args(library_args)
    args = parser.parse_args()

    # Provide overrides to the library configs
    update_library_config(args, setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter="json" if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    deploy_manager = setup_deploy_manager(args.resource_dir)
    manager = WatchManager(
        deploy_manager,
        [GatewayController(), DataPlaneController(), ControlPlaneController()],
    )

    # Register the signal handler to stop the watches
    def do_stop(*_, **__):  # pragma: no cover
        manager.stop()

    signal.signal(signal.SIGINT, do_stop)
    signal.signal(signal.SIGTERM, do_stop)

    log.info("Starting Watches")
    manager.watch()
    manager.wait()

    # All done!
    log.info("SHUTTING DOWN")


if __name__ == "__main__":  # pragma: no cover
    main()
