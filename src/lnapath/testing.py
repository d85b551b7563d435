"""
Unit testing utilities for `lnapath`

This module contains unit testing utilities: a deterministic mock of the ODE interval
solver and helpers for building confuse configurations from dictionaries. To use this
module the optional test dependencies must be installed.
"""

__all__ = [
    "FixedMomentSolver",
    "create_confuse_configview_from_dict",
    "sir_config",
]

from collections.abc import Sequence
from copy import deepcopy
from typing import Any

import confuse
import numpy as np
import numpy.typing as npt


class FixedMomentSolver:
    """
    A mock ODE interval solver returning prescribed drift and diffusion values.

    The drift and diffusion can either be fixed for every interval or given per
    interval as a sequence, in which case the `i`-th call to `integrate` returns the
    `i`-th entry. Every installed snapshot and integrated interval is recorded.

    Attributes:
        snapshots: Copies of the snapshots installed via `set_params`, in order.
        intervals: The `(t_left, t_right, step_size)` of each `integrate` call.

    Examples:
        >>> import numpy as np
        >>> from lnapath.testing import FixedMomentSolver
        >>> solver = FixedMomentSolver(drift=[0.1], diffusion=[[0.01]])
        >>> buffer = np.zeros(2)
        >>> solver.integrate(buffer, 0.0, 1.0, 1e-6)
        >>> buffer
        array([0.1 , 0.01])
        >>> solver.intervals
        [(0.0, 1.0, 1e-06)]
    """

    def __init__(
        self,
        drift: Sequence[float] | Sequence[Sequence[float]],
        diffusion: Sequence[Sequence[float]] | Sequence[Sequence[Sequence[float]]],
    ) -> None:
        self._drift = np.asarray(drift, dtype=np.float64)
        self._diffusion = np.asarray(diffusion, dtype=np.float64)
        self._per_interval = self._drift.ndim == 2
        if self._per_interval != (self._diffusion.ndim == 3):
            raise ValueError(
                "`drift` and `diffusion` must both be fixed or both be per interval."
            )
        self.snapshots: list[npt.NDArray[np.float64]] = []
        self.intervals: list[tuple[float, float, float]] = []

    def set_params(self, snapshot: npt.NDArray[np.float64]) -> None:
        self.snapshots.append(np.array(snapshot, copy=True))

    def integrate(
        self,
        buffer: npt.NDArray[np.float64],
        t_left: float,
        t_right: float,
        step_size: float,
    ) -> None:
        i = len(self.intervals)
        self.intervals.append((t_left, t_right, step_size))
        drift = self._drift[i] if self._per_interval else self._drift
        diffusion = self._diffusion[i] if self._per_interval else self._diffusion
        n_events = drift.shape[0]
        buffer[:n_events] = drift
        buffer[n_events:] = diffusion.ravel()


def create_confuse_configview_from_dict(
    data: dict[str, Any], name: None | str = None
) -> confuse.ConfigView:
    """
    Create a ConfigView from a dictionary for unit testing confuse parameters.

    Args:
        data: The data to populate the confuse ConfigView with.
        name: The name of the Subview being created or if is `None` a RootView is
            created instead.

    Returns:
        Either a confuse Subview or RootView depending on the value of `name`.

    Examples:
        >>> rv = create_confuse_configview_from_dict({"name": "sir", "compartments": ["S", "I"]})
        >>> rv
        <RootView: root>
        >>> rv["compartments"].get()
        ['S', 'I']
        >>> sv = create_confuse_configview_from_dict({"step_size": 0.01}, "lna")
        >>> sv
        <Subview: lna>
        >>> sv.get()
        {'step_size': 0.01}
    """
    data = {name: data} if name is not None else data
    cv = confuse.RootView([confuse.ConfigSource.of(data)])
    cv = cv[name] if name is not None else cv
    return cv


_SIR_CONFIG = {
    "name": "sir",
    "compartments": ["S", "I", "R"],
    "parameters": {"beta": 0.0005, "gamma": 0.25},
    "initial_volumes": {"S": 990.0, "I": 10.0, "R": 0.0},
    "events": {
        "infection": {"from": "S", "to": "I", "rate": "beta * S * I"},
        "recovery": {"from": "I", "to": "R", "rate": "gamma * I"},
    },
    "times": {"start": 0.0, "end": 10.0, "dt": 1.0},
}


def sir_config(**overrides: Any) -> dict[str, Any]:
    """
    A small SIR model configuration for tests.

    Args:
        **overrides: Top level keys to replace in the configuration.

    Returns:
        A fresh dictionary holding the configuration.

    Examples:
        >>> sir_config()["compartments"]
        ['S', 'I', 'R']
        >>> sir_config(name="other")["name"]
        'other'
    """
    config = deepcopy(_SIR_CONFIG)
    config.update(overrides)
    return config
