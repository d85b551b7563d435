"""
Failure types for LNA path construction.

Path construction can fail for a handful of deterministic, input dependent reasons
which make a given combination of draws and parameters inadmissible. These are
reported as `PathFailure` values instead of raised exceptions so that callers
holding a retry budget can inspect the kind and the failing interval directly.
Contract violations of the inputs themselves are raised eagerly as
`InvalidInputError`.
"""

__all__ = (
    "FailureKind",
    "InvalidInputError",
    "LNAPathError",
    "PathFailure",
)


from dataclasses import dataclass
from enum import Enum
from typing import Literal, NoReturn


class FailureKind(str, Enum):
    """
    The kinds of failures that can occur while constructing an LNA path.

    Examples:
        >>> from lnapath.errors import FailureKind
        >>> FailureKind.NEGATIVE_VOLUME.value
        'negative_volume'
        >>> FailureKind("integration_failure") is FailureKind.INTEGRATION_FAILURE
        True
    """

    INTEGRATION_FAILURE = "integration_failure"
    DECOMPOSITION_FAILURE = "decomposition_failure"
    NEGATIVE_INCREMENT = "negative_increment"
    NEGATIVE_VOLUME = "negative_volume"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True)
class PathFailure:
    """
    A recoverable failure to construct an LNA path.

    Attributes:
        kind: The kind of failure encountered.
        interval: The zero based index of the interval being processed when the
            failure occurred, or `None` if the failure occurred before the first
            interval (i.e. while applying a forcing at the first time).
        message: A human readable description of the failure.

    Examples:
        >>> from lnapath.errors import FailureKind, PathFailure
        >>> failure = PathFailure(FailureKind.NEGATIVE_INCREMENT, 3, "Negative increment.")
        >>> failure.ok
        False
        >>> str(failure)
        'negative_increment on interval 3: Negative increment.'
    """

    kind: FailureKind
    interval: int | None
    message: str = ""

    @property
    def ok(self) -> Literal[False]:
        """Always `False`, a failure is never a usable path."""
        return False

    def __str__(self) -> str:
        where = "at initialization" if self.interval is None else f"on interval {self.interval}"
        return f"{self.kind.value} {where}: {self.message}"

    def raise_error(self) -> NoReturn:
        """
        Raise this failure as an exception.

        Raises:
            LNAPathError: Always, carrying this failure.
        """
        raise LNAPathError(self)


class LNAPathError(Exception):
    """
    An exception wrapping a `PathFailure`.

    Attributes:
        failure: The failure that caused this exception.
    """

    def __init__(self, failure: PathFailure) -> None:
        super().__init__(str(failure))
        self.failure = failure

    @property
    def kind(self) -> FailureKind:
        return self.failure.kind


class InvalidInputError(LNAPathError, ValueError):
    """
    Raised when the inputs to path construction violate their contract.

    Examples:
        >>> from lnapath.errors import InvalidInputError
        >>> err = InvalidInputError("`lna_times` must be strictly increasing.")
        >>> err.kind.value
        'invalid_input'
        >>> isinstance(err, ValueError)
        True
    """

    def __init__(self, message: str) -> None:
        super().__init__(PathFailure(FailureKind.INVALID_INPUT, None, message))
