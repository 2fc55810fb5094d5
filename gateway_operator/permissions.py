"""
The permission resolver maps a control plane image to the ClusterRole the
control plane needs. The image tag is parsed as a version and matched against
an ascending table of half-open version ranges, each naming a rule set.
"""

# Standard
from dataclasses import dataclass
from typing import Callable, List, Optional

# Third Party
import semver

# First Party
import alog

# Local
from . import constants
from .exceptions import InvalidVersionError, UnsupportedVersionError
from .resources import clusterroles

log = alog.use_channel("PERMS")

## Version table ###############################################################


@dataclass(frozen=True)
class VersionRange:
    """Half-open range [lower, upper) of versions sharing a rule set. An upper
    bound of None is unbounded.
    """

    lower: semver.Version
    upper: Optional[semver.Version]
    rules: Callable[[], List[dict]]

    def contains(self, version: semver.Version) -> bool:
        return self.lower <= version and (self.upper is None or version < self.upper)


def _v(version: str) -> semver.Version:
    return semver.Version.parse(version, optional_minor_and_patch=True)


VERSION_RANGES = [
    VersionRange(_v("2.1"), _v("2.2"), clusterroles.rules_ge2_1_lt2_2),
    VersionRange(_v("2.2"), _v("2.3"), clusterroles.rules_ge2_2_lt2_3),
    VersionRange(_v("2.3"), _v("2.4"), clusterroles.rules_ge2_3_lt2_4),
    VersionRange(_v("2.4"), _v("2.6"), clusterroles.rules_ge2_4_lt2_6),
    VersionRange(_v("2.6"), None, clusterroles.rules_ge2_6),
]

# Untagged and "latest" images resolve to the newest range
LATEST_KNOWN_VERSION = VERSION_RANGES[-1].lower
LATEST_TAG = "latest"


def _validate_ranges(ranges: List[VersionRange]):
    for prev, cur in zip(ranges, ranges[1:]):
        assert prev.upper is not None, "Only the last version range may be unbounded"
        assert prev.lower < prev.upper, f"Empty version range at {prev.lower}"
        assert prev.upper <= cur.lower, f"Overlapping version ranges at {cur.lower}"


_validate_ranges(VERSION_RANGES)

## Public ######################################################################


def get_image_tag(image: Optional[str]) -> Optional[str]:
    """Extract the tag from an image reference. The tag is the text after the
    last ':' unless that text contains a '/', in which case the ':' belonged to
    a registry port. Digests are ignored.

    Args:
        image:  Optional[str]
            The image reference

    Returns:
        tag:  Optional[str]
            The tag, or None if the image has no tag
    """
    if not image:
        return None
    image = image.split("@", 1)[0]
    if ":" not in image:
        return None
    tag = image.rsplit(":", 1)[1]
    if "/" in tag or not tag:
        return None
    return tag


def resolve_version(image: Optional[str]) -> semver.Version:
    """Resolve the control plane version from its image

    Args:
        image:  Optional[str]
            The control plane image. None or empty means the default image.

    Returns:
        version:  semver.Version
            The parsed version

    Raises:
        InvalidVersionError:  If the tag cannot be parsed as a version
    """
    if not image:
        tag = constants.DEFAULT_CONTROL_PLANE_TAG
    else:
        tag = get_image_tag(image)
        if tag is None or tag == LATEST_TAG:
            log.debug2("Image %s resolves to the latest known version", image)
            return LATEST_KNOWN_VERSION

    version_str = tag[1:] if tag.startswith("v") else tag
    try:
        return semver.Version.parse(version_str, optional_minor_and_patch=True)
    except (ValueError, TypeError) as err:
        raise InvalidVersionError(tag) from err


def resolve_rules(image: Optional[str]) -> List[dict]:
    """Resolve the ClusterRole rules for a control plane image

    Raises:
        InvalidVersionError:  If the tag cannot be parsed as a version
        UnsupportedVersionError:  If no range covers the version
    """
    version = resolve_version(image)
    # Pre-releases resolve to the range of their release
    comparable = version.finalize_version()
    for version_range in VERSION_RANGES:
        if version_range.contains(comparable):
            log.debug2("Version %s matched range >=%s", version, version_range.lower)
            return version_range.rules()
    raise UnsupportedVersionError(version)


def resolve_permissions(name_prefix: str, image: Optional[str]) -> dict:
    """Build the ClusterRole for a control plane

    Args:
        name_prefix:  str
            Prefix the cluster generates the ClusterRole name from
        image:  Optional[str]
            The control plane image

    Returns:
        cluster_role:  dict
            The ClusterRole manifest labelled as control plane managed
    """
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": "ClusterRole",
        "metadata": {
            "generateName": name_prefix,
            "labels": {
                constants.MANAGED_BY_LABEL: constants.MANAGED_BY_CONTROL_PLANE,
            },
        },
        "rules": resolve_rules(image),
    }
