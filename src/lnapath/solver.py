"""
Interfaces to the ODE interval solver used when constructing LNA paths.

The path assembler never integrates the LNA moment equations itself. Instead it talks
to an object implementing the `LNASolver` protocol: one method to install a parameter
snapshot and one method to integrate the drift and diffusion over an interval into a
caller provided buffer. The buffer layout is fixed, the first `n_events` slots hold
the drift and the remaining `n_events**2` slots hold the row-major flattened
diffusion matrix.
"""

__all__ = (
    "CallbackSolver",
    "LNASolver",
    "n_lna_odes",
    "split_lna_buffer",
)


from typing import Callable, Protocol, runtime_checkable

import numpy as np
import numpy.typing as npt


@runtime_checkable
class LNASolver(Protocol):
    """The capabilities the path assembler needs from an ODE interval solver."""

    def set_params(self, snapshot: npt.NDArray[np.float64]) -> None:
        """
        Install a parameter snapshot into the solver's internal state.

        Args:
            snapshot: The current parameter vector, including the current compartment
                volumes. Implementations must copy what they need, the caller reuses
                this array.
        """
        ...

    def integrate(
        self,
        buffer: npt.NDArray[np.float64],
        t_left: float,
        t_right: float,
        step_size: float,
    ) -> None:
        """
        Integrate the LNA moment equations over `[t_left, t_right]`.

        Args:
            buffer: A zero initialized buffer of length `n_events + n_events**2` to
                write the drift and row-major diffusion into.
            t_left: The left endpoint of the interval.
            t_right: The right endpoint of the interval.
            step_size: The initial step size for an adaptive stepper.
        """
        ...


class CallbackSolver:
    """
    Adapt a pair of plain callables to the `LNASolver` protocol.

    Examples:
        >>> import numpy as np
        >>> from lnapath.solver import CallbackSolver, LNASolver
        >>> installed = []
        >>> def integrate(buffer, t_left, t_right, step_size):
        ...     buffer[0] = 0.1 * (t_right - t_left)
        >>> solver = CallbackSolver(integrate, installed.append)
        >>> isinstance(solver, LNASolver)
        True
        >>> buffer = np.zeros(2)
        >>> solver.integrate(buffer, 0.0, 2.0, 1e-6)
        >>> buffer
        array([0.2, 0. ])
    """

    def __init__(
        self,
        integrate: Callable[[npt.NDArray[np.float64], float, float, float], None],
        set_params: Callable[[npt.NDArray[np.float64]], None],
    ) -> None:
        self._integrate = integrate
        self._set_params = set_params

    def set_params(self, snapshot: npt.NDArray[np.float64]) -> None:
        self._set_params(snapshot)

    def integrate(
        self,
        buffer: npt.NDArray[np.float64],
        t_left: float,
        t_right: float,
        step_size: float,
    ) -> None:
        self._integrate(buffer, t_left, t_right, step_size)


def n_lna_odes(n_events: int) -> int:
    """
    The number of LNA moment equations for a given number of events.

    Args:
        n_events: The number of transition event types.

    Returns:
        The length of the solver buffer, `n_events + n_events**2`.

    Examples:
        >>> n_lna_odes(1)
        2
        >>> n_lna_odes(3)
        12
    """
    return n_events + n_events * n_events


def split_lna_buffer(
    buffer: npt.NDArray[np.float64], n_events: int
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Split a solver buffer into its drift vector and diffusion matrix.

    Args:
        buffer: The solver output buffer of length `n_events + n_events**2`.
        n_events: The number of transition event types.

    Returns:
        A tuple of the drift vector and the diffusion matrix. Both are views into
        `buffer`, not copies.

    Raises:
        ValueError: If the length of `buffer` does not match `n_events`.

    Examples:
        >>> import numpy as np
        >>> drift, diffusion = split_lna_buffer(np.arange(6.0), 2)
        >>> drift
        array([0., 1.])
        >>> diffusion
        array([[2., 3.],
               [4., 5.]])
    """
    if buffer.shape != (n_lna_odes(n_events),):
        raise ValueError(
            f"Expected a buffer of length {n_lna_odes(n_events)} "
            f"for {n_events} events, was given shape {buffer.shape}."
        )
    return buffer[:n_events], buffer[n_events:].reshape(n_events, n_events)
