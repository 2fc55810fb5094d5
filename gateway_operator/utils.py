"""
Common utilities shared across the operator
"""

# Standard
from typing import Any, Dict, Iterable, List, Optional
import datetime

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("OPUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and the type of the key for both
    is a dict, recursively merge, otherwise set the base value to the override
    value. Lists are replaced wholesale.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation. Missing
    intermediate dicts are created.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(f"Intermediate key {part} is not a dict")
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to read from
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts and intermediate values
            that are None.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(  # pylint: disable=consider-using-f-string
                    constants.NESTED_DICT_DELIM.join(parts[: i + 1])
                )
            )
    val = dct.get(parts[-1], dflt)
    return dflt if val is None else val


## Objects #####################################################################


def is_deleting(obj: dict) -> bool:
    """An object is pending deletion once it carries a deletionTimestamp"""
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def add_finalizer(obj: dict, finalizer: str) -> bool:
    """Add the finalizer to the object's metadata in place

    Returns:
        added:  bool
            True if the finalizer was not already present
    """
    finalizers = obj.setdefault("metadata", {}).setdefault("finalizers", [])
    if finalizer in finalizers:
        return False
    finalizers.append(finalizer)
    return True


def remove_finalizer(obj: dict, finalizer: str) -> bool:
    """Remove the finalizer from the object's metadata in place

    Returns:
        removed:  bool
            True if the finalizer was present
    """
    finalizers = obj.get("metadata", {}).get("finalizers") or []
    if finalizer not in finalizers:
        return False
    obj["metadata"]["finalizers"] = [f for f in finalizers if f != finalizer]
    return True


def make_label_selector(labels: Dict[str, str]) -> str:
    """Render a dict of labels as an equality-based label selector string"""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def labels_match(labels: Optional[dict], match_labels: Dict[str, str]) -> bool:
    """True if every key/value in match_labels is present in labels"""
    labels = labels or {}
    return all(labels.get(key) == value for key, value in match_labels.items())


def oldest_first(objs: Iterable[dict]) -> List[dict]:
    """Sort objects by creationTimestamp, falling back to name"""
    return sorted(
        objs,
        key=lambda obj: (
            obj.get("metadata", {}).get("creationTimestamp") or "",
            obj.get("metadata", {}).get("name") or "",
        ),
    )


def now_timestamp() -> str:
    """RFC3339 UTC timestamp as used in kubernetes metadata"""
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


## Decorators ##################################################################


class classproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """@classmethod+@property
    CITE: https://stackoverflow.com/a/22729414
    """

    def __init__(self, func):
        self.func = classmethod(func)

    def __get__(self, *args):
        return self.func.__get__(*args)()


class abstractclassproperty:  # pylint: disable=invalid-name,too-few-public-methods
    """This decorator implements a classproperty that will raise when accessed
    on a class that did not override it
    """

    def __init__(self, func):
        self.prop_name = func.__name__

    def __get__(self, *args):
        raise NotImplementedError(
            f"Cannot access abstractclassproperty {self.prop_name}"
        )
