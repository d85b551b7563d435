"""
Construct LNA sample paths from standard normal draws.

This module implements the non-centered parameterization of the log-scale counting
process linear noise approximation. For a fixed time grid, parameter trajectory and
matrix of independent N(0, 1) draws an `LNAPathAssembler` deterministically maps the
draws to an incidence path (event counts per interval) and a prevalence path
(compartment volumes at each grid time), or reports why that combination of draws
and parameters is inadmissible.

Per interval the assembler:
1. integrates the drift and diffusion of the LNA with the solver,
2. maps the interval's draws through a square root of the diffusion and adds the
   drift to get a log-scale increment,
3. converts the increment to the natural scale with `expm1`, and
4. updates the compartment volumes, applies forcings and refreshes covariates before
   installing the new snapshot for the next interval.

Examples:
    >>> import numpy as np
    >>> from lnapath.lna import map_draws_to_lna
    >>> from lnapath.testing import FixedMomentSolver
    >>> path = map_draws_to_lna(
    ...     lna_times=np.array([0.0, 1.0, 2.0]),
    ...     draws=np.zeros((1, 2)),
    ...     lna_pars=np.array([[100.0, 0.0]] * 3),
    ...     init_start=0,
    ...     tcovar_inds=[],
    ...     param_update_inds=np.zeros(3, dtype=bool),
    ...     stoich_matrix=np.array([[-1.0], [1.0]]),
    ...     solver=FixedMomentSolver(drift=[0.0], diffusion=[[0.0]]),
    ... )
    >>> path.prevalence
    array([[  0., 100.,   0.],
           [  1., 100.,   0.],
           [  2., 100.,   0.]])
"""

__all__ = (
    "LNAPath",
    "LNAPathAssembler",
    "LNAPathResult",
    "map_draws_to_lna",
    "propose_lna",
)


from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import Literal

import numpy as np
import numpy.typing as npt
import pandas as pd
import scipy.linalg
import xarray as xr

from .diffusion import diffusion_sqrt
from .errors import FailureKind, InvalidInputError, PathFailure
from .forcing import ForcingSchedule
from .solver import LNASolver, n_lna_odes, split_lna_buffer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LNAPath:
    """
    An LNA sample path.

    Attributes:
        draws: The (n_events, n_times - 1) matrix of N(0, 1) draws the path was
            constructed from.
        incidence: The (n_times, n_events + 1) incidence path, the first column holds
            the grid times and the remaining columns the natural scale event
            increments over the interval ending at that time.
        prevalence: The (n_times, n_comps + 1) prevalence path, the first column
            holds the grid times and the remaining columns the compartment volumes.
    """

    draws: npt.NDArray[np.float64]
    incidence: npt.NDArray[np.float64]
    prevalence: npt.NDArray[np.float64]

    @property
    def ok(self) -> Literal[True]:
        """Always `True`, distinguishes a path from a `PathFailure`."""
        return True

    @property
    def times(self) -> npt.NDArray[np.float64]:
        return self.incidence[:, 0]

    def to_xarray(
        self,
        compartments: Sequence[str] | None = None,
        events: Sequence[str] | None = None,
    ) -> xr.Dataset:
        """
        Convert this path to a labelled dataset.

        Args:
            compartments: Names for the compartments, defaults to `comp_<i>`.
            events: Names for the events, defaults to `event_<i>`.

        Returns:
            A dataset with `incidence` and `prevalence` variables over a `time`
            dimension.
        """
        compartments, events = self._names(compartments, events)
        return xr.Dataset(
            data_vars=dict(
                incidence=(["time", "event"], self.incidence[:, 1:]),
                prevalence=(["time", "compartment"], self.prevalence[:, 1:]),
            ),
            coords=dict(time=self.times, event=events, compartment=compartments),
            attrs=dict(description="LNA sample path"),
        )

    def to_dataframes(
        self,
        compartments: Sequence[str] | None = None,
        events: Sequence[str] | None = None,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """
        Convert this path to a pair of data frames.

        Args:
            compartments: Names for the compartments, defaults to `comp_<i>`.
            events: Names for the events, defaults to `event_<i>`.

        Returns:
            A tuple of the incidence and prevalence data frames, each with a `time`
            column followed by one column per event or compartment.
        """
        compartments, events = self._names(compartments, events)
        incidence = pd.DataFrame(self.incidence, columns=["time", *events])
        prevalence = pd.DataFrame(self.prevalence, columns=["time", *compartments])
        return incidence, prevalence

    def _names(
        self,
        compartments: Sequence[str] | None,
        events: Sequence[str] | None,
    ) -> tuple[list[str], list[str]]:
        n_comps = self.prevalence.shape[1] - 1
        n_events = self.incidence.shape[1] - 1
        compartments = (
            [f"comp_{i}" for i in range(n_comps)] if compartments is None else list(compartments)
        )
        events = [f"event_{i}" for i in range(n_events)] if events is None else list(events)
        if len(compartments) != n_comps or len(events) != n_events:
            raise ValueError(
                f"Expected {n_comps} compartment and {n_events} event names, was "
                f"given {len(compartments)} and {len(events)}."
            )
        return compartments, events


LNAPathResult = LNAPath | PathFailure


class LNAPathAssembler:
    """
    Map standard normal draws to LNA sample paths for a fixed model structure.

    The assembler owns the solver and the scratch buffers reused across intervals
    and across calls, so a single assembler must not be shared between concurrent
    callers. Construct one per thread or process instead.

    Attributes:
        stoich_matrix: The (n_comps, n_events) stoichiometry matrix.
        init_start: The column of the parameter trajectory where the initial
            compartment volumes start.
        tcovar_inds: The columns of the parameter trajectory holding time-varying
            covariates, refreshed into the snapshot when flagged.
        solver: The ODE interval solver.
        forcings: The forcing schedule, or `None` if there are no forcings.
        step_size: The initial step size handed to the solver.
        census_after_forcing: If `True` the prevalence at a grid time is recorded
            after the forcings at that time are applied, otherwise before. See
            `map_draws` for the full ordering.
    """

    def __init__(
        self,
        stoich_matrix: npt.NDArray[np.float64],
        init_start: int,
        tcovar_inds: Sequence[int],
        solver: LNASolver,
        forcings: ForcingSchedule | None = None,
        step_size: float = 1.0e-6,
        census_after_forcing: bool = True,
    ) -> None:
        """
        Initialize an assembler.

        Raises:
            InvalidInputError: If the stoichiometry matrix is not two dimensional, the
                offsets or step size are invalid, or the forcing schedule does not
                match the number of compartments.
        """
        self.stoich_matrix = np.asarray(stoich_matrix, dtype=np.float64)
        if self.stoich_matrix.ndim != 2 or 0 in self.stoich_matrix.shape:
            raise InvalidInputError(
                "`stoich_matrix` must be a non-empty (n_comps, n_events) matrix, "
                f"was given shape {self.stoich_matrix.shape}."
            )
        if init_start < 0:
            raise InvalidInputError(f"`init_start` must be non-negative, was {init_start}.")
        if not step_size > 0.0:
            raise InvalidInputError(f"`step_size` must be positive, was {step_size}.")
        self.tcovar_inds = np.asarray(tcovar_inds, dtype=np.int64)
        if forcings is not None and forcings.n_comps != self.stoich_matrix.shape[0]:
            raise InvalidInputError(
                f"The forcing schedule covers {forcings.n_comps} compartments but the "
                f"stoichiometry matrix has {self.stoich_matrix.shape[0]}."
            )
        self.init_start = init_start
        self.solver = solver
        self.forcings = forcings
        self.step_size = step_size
        self.census_after_forcing = census_after_forcing
        self._buffer = np.zeros(n_lna_odes(self.n_events))
        self._sqrt_diffusion = np.zeros((self.n_events, self.n_events))
        self._log_increment = np.zeros(self.n_events)

    @property
    def n_comps(self) -> int:
        return self.stoich_matrix.shape[0]

    @property
    def n_events(self) -> int:
        return self.stoich_matrix.shape[1]

    def map_draws(
        self,
        lna_times: npt.ArrayLike,
        draws: npt.ArrayLike,
        lna_pars: npt.ArrayLike,
        param_update_inds: npt.ArrayLike,
    ) -> LNAPathResult:
        """
        Construct one LNA path from a matrix of draws.

        Exactly one pass over the time grid is made, no retries are attempted.

        Forcings due at the first time are applied before the single initial
        `set_params`, so the first interval integrates from the forced volumes and
        the solver sees only one installed snapshot per grid time. At later times
        the forcings are applied after the increment and before the next snapshot is
        installed. Neither value of `census_after_forcing` records in the order
        "census then force" at every time: `True` records every row, row 0
        included, after the forcings at that time, and `False` records every row,
        row 0 included, before them. In both modes the solver continues from the
        forced volumes.

        Args:
            lna_times: The strictly increasing grid times.
            draws: The (n_events, n_times - 1) matrix of N(0, 1) draws, one column per
                interval. A flat vector is reshaped column by column.
            lna_pars: The (n_times, n_cols) parameter trajectory.
            param_update_inds: Boolean flags over the grid times marking where the
                time-varying covariates must be refreshed.

        Returns:
            Either the constructed `LNAPath` or a `PathFailure` describing the first
            interval at which the path became inadmissible.

        Raises:
            InvalidInputError: If the inputs are inconsistent with each other or with
                this assembler.
        """
        times, draws, lna_pars, param_update_inds = self._validate_inputs(
            lna_times, draws, lna_pars, param_update_inds
        )
        n_times = times.shape[0]
        init_slice = slice(self.init_start, self.init_start + self.n_comps)

        snapshot = lna_pars[0].copy()
        volumes = snapshot[init_slice].copy()

        incidence = np.zeros((n_times, self.n_events + 1))
        prevalence = np.zeros((n_times, self.n_comps + 1))
        incidence[:, 0] = times
        prevalence[:, 0] = times

        if not self.census_after_forcing:
            prevalence[0, 1:] = volumes
        if self._forcing_due(0):
            self.forcings.apply(volumes, lna_pars[0])
            if np.any(volumes < 0.0):
                return self._fail(
                    FailureKind.NEGATIVE_VOLUME,
                    None,
                    "Negative compartment volumes after forcing at the first time.",
                )
        if self.census_after_forcing:
            prevalence[0, 1:] = volumes
        snapshot[init_slice] = volumes
        self.solver.set_params(snapshot)

        for j in range(n_times - 1):
            self._buffer.fill(0.0)
            self.solver.integrate(
                self._buffer, float(times[j]), float(times[j + 1]), self.step_size
            )
            drift, diffusion = split_lna_buffer(self._buffer, self.n_events)
            if not (np.all(np.isfinite(drift)) and np.all(np.isfinite(diffusion))):
                return self._fail(
                    FailureKind.INTEGRATION_FAILURE, j, "Integration failed."
                )

            try:
                diffusion_sqrt(diffusion, out=self._sqrt_diffusion)
            except (scipy.linalg.LinAlgError, ValueError) as e:
                return self._fail(
                    FailureKind.DECOMPOSITION_FAILURE, j, f"SVD failed: {e}"
                )

            np.matmul(self._sqrt_diffusion, draws[:, j], out=self._log_increment)
            self._log_increment += drift
            increment = np.expm1(self._log_increment)
            if np.any(increment < 0.0):
                return self._fail(
                    FailureKind.NEGATIVE_INCREMENT, j, "Negative increment."
                )

            volumes += self.stoich_matrix @ increment
            if np.any(volumes < 0.0):
                return self._fail(
                    FailureKind.NEGATIVE_VOLUME, j, "Negative compartment volumes."
                )

            incidence[j + 1, 1:] = increment
            if not self.census_after_forcing:
                prevalence[j + 1, 1:] = volumes

            if self._forcing_due(j + 1):
                self.forcings.apply(volumes, lna_pars[j + 1])
                if np.any(volumes < 0.0):
                    return self._fail(
                        FailureKind.NEGATIVE_VOLUME,
                        j,
                        "Negative compartment volumes after forcing.",
                    )
            if self.census_after_forcing:
                prevalence[j + 1, 1:] = volumes

            if param_update_inds[j + 1]:
                snapshot[self.tcovar_inds] = lna_pars[j + 1, self.tcovar_inds]
            snapshot[init_slice] = volumes
            self.solver.set_params(snapshot)

        return LNAPath(draws=draws, incidence=incidence, prevalence=prevalence)

    def _forcing_due(self, time_index: int) -> bool:
        return self.forcings is not None and bool(self.forcings.forcing_inds[time_index])

    def _fail(self, kind: FailureKind, interval: int | None, message: str) -> PathFailure:
        failure = PathFailure(kind=kind, interval=interval, message=message)
        logger.debug("LNA path construction failed, %s", failure)
        return failure

    def _validate_inputs(
        self,
        lna_times: npt.ArrayLike,
        draws: npt.ArrayLike,
        lna_pars: npt.ArrayLike,
        param_update_inds: npt.ArrayLike,
    ) -> tuple[
        npt.NDArray[np.float64],
        npt.NDArray[np.float64],
        npt.NDArray[np.float64],
        npt.NDArray[np.bool_],
    ]:
        times = np.asarray(lna_times, dtype=np.float64)
        if times.ndim != 1 or times.shape[0] < 1:
            raise InvalidInputError(
                f"`lna_times` must be a non-empty vector, was given shape {times.shape}."
            )
        if not np.all(np.isfinite(times)) or np.any(np.diff(times) <= 0.0):
            raise InvalidInputError("`lna_times` must be finite and strictly increasing.")
        n_times = times.shape[0]
        n_intervals = n_times - 1

        draws = np.array(draws, dtype=np.float64)
        if draws.ndim == 1 and draws.shape[0] == self.n_events * n_intervals:
            draws = draws.reshape((self.n_events, n_intervals), order="F")
        if draws.shape != (self.n_events, n_intervals):
            raise InvalidInputError(
                f"`draws` must have shape {(self.n_events, n_intervals)}, "
                f"was given {draws.shape}."
            )
        if not np.all(np.isfinite(draws)):
            raise InvalidInputError("`draws` must be finite.")

        lna_pars = np.asarray(lna_pars, dtype=np.float64)
        if lna_pars.ndim != 2 or lna_pars.shape[0] != n_times:
            raise InvalidInputError(
                f"`lna_pars` must have one row per time, {n_times}, "
                f"was given shape {lna_pars.shape}."
            )
        n_cols = lna_pars.shape[1]
        if self.init_start + self.n_comps > n_cols:
            raise InvalidInputError(
                f"The initial volumes, columns {self.init_start} to "
                f"{self.init_start + self.n_comps - 1}, do not fit in `lna_pars` "
                f"with {n_cols} columns."
            )
        if np.any((self.tcovar_inds < 0) | (self.tcovar_inds >= n_cols)):
            raise InvalidInputError(
                f"`tcovar_inds` must index the {n_cols} columns of `lna_pars`."
            )

        param_update_inds = np.asarray(param_update_inds, dtype=np.bool_)
        if param_update_inds.shape != (n_times,):
            raise InvalidInputError(
                f"`param_update_inds` must have length {n_times}, "
                f"was given shape {param_update_inds.shape}."
            )

        if self.forcings is not None:
            if self.forcings.forcing_inds.shape != (n_times,):
                raise InvalidInputError(
                    f"`forcing_inds` must have length {n_times}, "
                    f"was given shape {self.forcings.forcing_inds.shape}."
                )
            tcov_inds = self.forcings.forcing_tcov_inds
            if np.any((tcov_inds < 0) | (tcov_inds >= n_cols)):
                raise InvalidInputError(
                    f"`forcing_tcov_inds` must index the {n_cols} columns of `lna_pars`."
                )

        return times, draws, lna_pars, param_update_inds


def map_draws_to_lna(
    lna_times: npt.ArrayLike,
    draws: npt.ArrayLike,
    lna_pars: npt.ArrayLike,
    init_start: int,
    tcovar_inds: Sequence[int],
    param_update_inds: npt.ArrayLike,
    stoich_matrix: npt.ArrayLike,
    solver: LNASolver,
    forcings: ForcingSchedule | None = None,
    step_size: float = 1.0e-6,
    census_after_forcing: bool = True,
) -> LNAPathResult:
    """
    Construct one LNA path, taking every input explicitly.

    A convenience wrapper around `LNAPathAssembler` for one-off use, callers
    constructing many paths for the same model should keep an assembler around.

    Args:
        lna_times: The strictly increasing grid times.
        draws: The (n_events, n_times - 1) matrix of N(0, 1) draws.
        lna_pars: The (n_times, n_cols) parameter trajectory.
        init_start: The column of `lna_pars` where the initial volumes start.
        tcovar_inds: The columns of `lna_pars` holding time-varying covariates.
        param_update_inds: Boolean flags marking where covariates are refreshed.
        stoich_matrix: The (n_comps, n_events) stoichiometry matrix.
        solver: The ODE interval solver.
        forcings: The forcing schedule, if any.
        step_size: The initial step size handed to the solver.
        census_after_forcing: Record prevalence after (default) or before the
            forcings at each time.

    Returns:
        Either an `LNAPath` or a `PathFailure`.

    Raises:
        InvalidInputError: If the inputs violate their contract.
    """
    assembler = LNAPathAssembler(
        stoich_matrix=stoich_matrix,
        init_start=init_start,
        tcovar_inds=tcovar_inds,
        solver=solver,
        forcings=forcings,
        step_size=step_size,
        census_after_forcing=census_after_forcing,
    )
    return assembler.map_draws(lna_times, draws, lna_pars, param_update_inds)


def propose_lna(
    assembler: LNAPathAssembler,
    lna_times: npt.ArrayLike,
    lna_pars: npt.ArrayLike,
    param_update_inds: npt.ArrayLike,
    draws: npt.ArrayLike | None = None,
    max_attempts: int = 1,
    rng: np.random.Generator | None = None,
) -> LNAPathResult:
    """
    Propose an LNA path, resampling the draws after recoverable failures.

    Args:
        assembler: The assembler to construct paths with.
        lna_times: The strictly increasing grid times.
        lna_pars: The (n_times, n_cols) parameter trajectory.
        param_update_inds: Boolean flags marking where covariates are refreshed.
        draws: The draws for the first attempt, or `None` to sample them from `rng`.
        max_attempts: The maximum number of passes to make.
        rng: The generator used to (re)sample draws. Without one only a single
            attempt with the given `draws` is possible.

    Returns:
        The first successful `LNAPath`, or the `PathFailure` of the last attempt if
        every attempt failed.

    Raises:
        InvalidInputError: If `max_attempts` is less than one, if neither `draws` nor
            `rng` is given, or if the inputs violate their contract.
    """
    if max_attempts < 1:
        raise InvalidInputError(f"`max_attempts` must be at least one, was {max_attempts}.")
    shape = (assembler.n_events, max(np.asarray(lna_times).shape[0] - 1, 0))
    if draws is None:
        if rng is None:
            raise InvalidInputError("Either `draws` or `rng` must be provided.")
        draws = rng.standard_normal(shape)
    result = assembler.map_draws(lna_times, draws, lna_pars, param_update_inds)
    attempt = 1
    while not result.ok and rng is not None and attempt < max_attempts:
        logger.debug(
            "Attempt %u of %u failed with %s, resampling draws.",
            attempt,
            max_attempts,
            result,
        )
        result = assembler.map_draws(
            lna_times, rng.standard_normal(shape), lna_pars, param_update_inds
        )
        attempt += 1
    if not result.ok:
        logger.info("No admissible LNA path after %u attempt(s), %s", attempt, result)
    return result
