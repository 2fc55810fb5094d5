"""
Module to validate the types of values in a loaded config
"""

# Standard
from typing import Any, List

# First Party
import aconfig
import alog

log = alog.use_channel("CONFG")

# Map from the type names usable in config_validation.yaml to the python types
# that satisfy them
_TYPE_MAP = {
    "str": (str,),
    "bool": (bool,),
    "int": (int,),
    "number": (int, float),
}

# Sentinel for missing values
_MISSING = object()


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            Mapping from (possibly dotted) config key to the name of the type
            the value must have

    Returns:
        invalid_params:  List[str]
            A list of all string keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, type_name in validation_config.items():
        valid_types = _TYPE_MAP.get(type_name)
        assert valid_types is not None, f"Unknown validation type: {type_name}"
        if not _is_valid(_lookup(config, val_key), valid_types):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


## Implementation ##############################################################


def _lookup(config: dict, key: str) -> Any:
    value = config
    for part in key.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _is_valid(value: Any, valid_types: tuple) -> bool:
    if value is _MISSING:
        return False
    # bool is an int subclass, but a bool is never a valid number
    if isinstance(value, bool) and bool not in valid_types:
        return False
    return isinstance(value, valid_types)
