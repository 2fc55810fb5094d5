"""
This module implements custom exceptions
"""

## Base Error ##################################################################


class GatewayOperatorError(Exception):
    """Base class for all gateway operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop retries
        for the object being reconciled
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class FatalError(GatewayOperatorError):
    """A FatalError is one that will not resolve by retrying. It is surfaced on
    the object's Ready condition and the object is not requeued.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(FatalError):
    """Exception caused by invalid user-provided configuration"""


class InvalidVersionError(FatalError):
    """Exception caused by an image tag that cannot be parsed as a version"""

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"unable to parse image tag {tag!r} as a version")


class UnsupportedVersionError(FatalError):
    """Exception caused by a parsed version that no known range covers"""

    def __init__(self, version):
        self.version = version
        super().__init__(f"version {version} not supported")


## Expected Errors #############################################################


class ExpectedError(GatewayOperatorError):
    """An ExpectedError is one that indicates a failure condition that should
    terminate the current pass, but is expected to resolve in a subsequent pass.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class ClusterError(ExpectedError):
    """Exception caused when an operation against the backing store fails"""


class ConflictError(ClusterError):
    """Exception caused by a conditional write against a stale resourceVersion"""


class PreconditionError(ExpectedError):
    """Exception caused when the pass needs another object to reach a state
    before it can continue
    """


class ReferenceNotFoundError(ExpectedError):
    """Exception caused when a referenced object does not exist. The reason is
    used as the condition reason surfaced on the referencing object.
    """

    def __init__(self, message: str = "", reason: str = "ReferenceNotFound"):
        self.reason = reason
        super().__init__(message)


## Contract Errors #############################################################


class UnexpectedObjectError(GatewayOperatorError):
    """Exception raised when an event handler receives an object of a type it
    does not handle
    """

    def __init__(self, expected: str, got):
        super().__init__(
            f"expected {expected}, got {type(got).__name__}", is_fatal_error=False
        )


class UnsupportedGatewayError(GatewayOperatorError):
    """Exception raised when a Gateway's class is owned by another controller"""

    def __init__(self, message: str = ""):
        super().__init__(message, is_fatal_error=False)


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError. This
    should be used when a pass depends on another object's state.
    """
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used to validate user-provided specs.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    object) must succeed.
    """
    if not condition:
        raise ClusterError(message)
