"""
The Controller class holds the reconcile logic for a single kind of custom
resource. The ReconcileManager handles fetching the object, finalizers, status
persistence and error mapping around it.
"""

# Standard
from typing import Optional
import abc

# First Party
import alog

# Local
from .. import constants
from ..session import Session
from ..utils import abstractclassproperty, classproperty

log = alog.use_channel("CTRLR")


class Controller(abc.ABC):
    """This class represents a controller for a single custom resource kind.
    A reconcile drives the cluster toward the state described by one object of
    that kind. Every pass starts from a fresh read and may be abandoned at any
    point, so reconcile logic must be idempotent.
    """

    ## Class Properties ########################################################

    # NOTE: pylint is very confused by the use of these property decorators, so
    #   we need to liberally ignore warnings.

    @classproperty
    def group(cls) -> str:  # pylint: disable=no-self-argument
        """The apiVersion group for the resource this controller manages"""
        return constants.GROUP

    @classproperty
    def version(cls) -> str:  # pylint: disable=no-self-argument
        """The apiVersion version for the resource this controller manages"""
        return constants.VERSION

    @abstractclassproperty  # noqa: B027
    def kind(cls) -> str:
        """The kind for the resource this controller manages"""

    @classproperty
    def api_version(cls) -> str:  # pylint: disable=no-self-argument
        return f"{cls.group}/{cls.version}"  # pylint: disable=no-member

    @classproperty
    def finalizer(cls) -> Optional[str]:  # pylint: disable=no-self-argument
        """The finalizer used by this Controller"""
        if cls.has_finalizer:  # pylint: disable=using-constant-test
            return f"finalizers.{cls.kind.lower()}.{cls.group}"  # pylint: disable=no-member
        return None

    @classproperty
    def has_finalizer(cls) -> bool:  # pylint: disable=no-self-argument
        """If the derived class has an implementation of finalize, it has a
        finalizer and is called when its objects are deleted
        """
        return cls.finalize is not Controller.finalize

    def __str__(self):
        """Stringify with the GVK"""
        return f"Controller({self.group}/{self.version}/{self.kind})"

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def reconcile(self, session: Session):
        """Drive the cluster toward the state the session's object describes.
        Status changes are made on session.resource and persisted by the
        caller once the pass ends.

        Error Semantics: Raise ConfigError for invalid user configuration,
        PreconditionError when waiting on another object, and
        ReferenceNotFoundError when a referenced object is missing.

        Args:
            session:  Session
                The session of the current reconciliation
        """

    ## Base Class Interface ####################################################

    def finalize(self, session: Session):  # noqa: B027
        """Called while the object is being deleted and still carries this
        controller's finalizer. Once it returns, the finalizer is removed.

        NOTE: This method is not abstract since not every kind needs cleanup

        Args:
            session:  Session
                The session of the current reconciliation
        """
