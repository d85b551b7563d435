"""
Compartmental model descriptions and their compilation into LNA inputs.

A model is described in YAML (or an equivalent dictionary) by its compartments,
transition events with mass-action style rate expressions, parameters, constants,
initial volumes, the LNA time grid, optional time-varying covariates and optional
forcings. `ModelConfig` validates such a description and `LNAModel` compiles it into
the stoichiometry matrix, parameter trajectory, forcing schedule and solver that the
path assembler consumes.

Configuration Items:

```yaml
name: <string>
compartments: [<string>, ...]
parameters:
  <name>: <float or numeric expression>
constants:
  <name>: <float or numeric expression>
initial_volumes:
  <compartment>: <float>
events:
  <name>:
    from: <compartment> optional
    to: <compartment> optional
    rate: <expression of compartments, parameters, constants, covariates, and t>
times:
  start: <float>
  end: <float>
  dt: <float>
  # or alternatively
  values: [<float>, ...]
tcovar:
  times: [<float>, ...]
  values:
    <name>: [<float>, ...]
forcings:
  <name>:
    tcovar: <covariate name giving the amount moved>
    from: <compartment or list of compartments>
    to: <compartment> optional
lna:
  step_size: <float>
  max_attempts: <int>
  method: choose one - "LSODA", "RK45", "RK23", "DOP853", "Radau", "BDF"
  rtol: <float>
  atol: <float>
  census_after_forcing: <bool>
```
"""

__all__ = (
    "EventConfig",
    "ForcingConfig",
    "LNAModel",
    "LNASettings",
    "ModelConfig",
    "TcovarConfig",
    "TimesConfig",
)


import logging
from typing import Annotated, Any, Literal

import confuse
import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
import sympy as sp

from ._pydantic_ext import EvaledFloat, EvaledInt, _ensure_list
from .forcing import ForcingSchedule
from .lna import LNAPathAssembler, LNAPathResult, propose_lna
from .lna_ode import ScipyLNASolver
from .lna_pars import LNAParameterLayout


logger = logging.getLogger(__name__)


class EventConfig(BaseModel):
    """
    A transition event moving one unit of mass between compartments.

    Attributes:
        source: The compartment losing mass, or `None` for an inflow.
        destination: The compartment gaining mass, or `None` for an outflow.
        rate: The hazard of the event as an expression.
    """

    model_config = ConfigDict(populate_by_name=True)

    source: str | None = Field(default=None, alias="from")
    destination: str | None = Field(default=None, alias="to")
    rate: str

    @model_validator(mode="after")
    def _validate_endpoints(self) -> "EventConfig":
        if self.source is None and self.destination is None:
            raise ValueError("An event must have at least one of 'from' or 'to'.")
        if self.source == self.destination:
            raise ValueError(
                f"An event cannot move mass from '{self.source}' into itself."
            )
        return self


class ForcingConfig(BaseModel):
    """
    A forcing moving mass out of one or more compartments at scheduled times.

    The forcing fires at each of the covariate times where its covariate is non-zero,
    those times must be LNA times.

    Attributes:
        tcovar: The name of the time-varying covariate giving the amount moved.
        source: The compartments mass is drawn from, proportionally to occupancy.
        destination: The compartment receiving the mass, or `None` if it leaves the
            system.
    """

    model_config = ConfigDict(populate_by_name=True)

    tcovar: str
    source: Annotated[list[str], BeforeValidator(_ensure_list)] = Field(
        alias="from", min_length=1
    )
    destination: str | None = Field(default=None, alias="to")


class TimesConfig(BaseModel):
    """
    The LNA time grid, either explicit or a regular grid.

    Examples:
        >>> from lnapath.model import TimesConfig
        >>> TimesConfig(start=0, end=2, dt="1/2").grid()
        array([0. , 0.5, 1. , 1.5, 2. ])
        >>> TimesConfig(values=[0, 1, 3]).grid()
        array([0., 1., 3.])
    """

    values: list[EvaledFloat] | None = None
    start: EvaledFloat | None = None
    end: EvaledFloat | None = None
    dt: EvaledFloat | None = Field(default=None, gt=0.0)

    @model_validator(mode="after")
    def _validate_grid(self) -> "TimesConfig":
        regular = (self.start, self.end, self.dt)
        if self.values is not None:
            if any(v is not None for v in regular):
                raise ValueError("Specify either 'values' or 'start', 'end' and 'dt'.")
            if len(self.values) < 2 or np.any(np.diff(self.values) <= 0.0):
                raise ValueError(
                    "The time 'values' must hold at least two strictly increasing times."
                )
        elif any(v is None for v in regular):
            raise ValueError("Specify either 'values' or all of 'start', 'end' and 'dt'.")
        elif self.end <= self.start:
            raise ValueError(
                f"The end time, {self.end}, is on or before the start time, {self.start}."
            )
        return self

    def grid(self) -> npt.NDArray[np.float64]:
        if self.values is not None:
            return np.asarray(self.values, dtype=np.float64)
        n_intervals = int(np.floor((self.end - self.start) / self.dt + 1.0e-9))
        return self.start + self.dt * np.arange(n_intervals + 1, dtype=np.float64)


class TcovarConfig(BaseModel):
    """
    Time-varying covariates, piecewise constant between their change times.

    Examples:
        >>> import numpy as np
        >>> from lnapath.model import TcovarConfig
        >>> tcovar = TcovarConfig(times=[0, 2], values={"vacc": [0, 5]})
        >>> tcovar.at(np.array([0.0, 1.0, 2.0, 3.0]))
        array([[0.],
               [0.],
               [5.],
               [5.]])
    """

    times: list[EvaledFloat] = Field(min_length=1)
    values: dict[str, list[EvaledFloat]] = Field(min_length=1)

    @model_validator(mode="after")
    def _validate_table(self) -> "TcovarConfig":
        if np.any(np.diff(self.times) <= 0.0):
            raise ValueError("Covariate 'times' must be strictly increasing.")
        for name, values in self.values.items():
            if len(values) != len(self.times):
                raise ValueError(
                    f"Covariate '{name}' has {len(values)} values "
                    f"for {len(self.times)} times."
                )
        return self

    @property
    def names(self) -> list[str]:
        return list(self.values)

    def at(self, times: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Evaluate the covariates at the given times.

        Times before the first change time take the first value.

        Returns:
            An array of shape (len(times), n_covariates).
        """
        table = np.column_stack([np.asarray(v, dtype=np.float64) for v in self.values.values()])
        rows = np.searchsorted(np.asarray(self.times), times, side="right") - 1
        return table[np.clip(rows, 0, None)]


class LNASettings(BaseModel):
    """Settings for the solver and the path assembler."""

    step_size: EvaledFloat = Field(default=1.0e-6, gt=0.0)
    max_attempts: EvaledInt = Field(default=1, ge=1)
    method: Literal["LSODA", "RK45", "RK23", "DOP853", "Radau", "BDF"] = "LSODA"
    rtol: EvaledFloat = Field(default=1.0e-6, gt=0.0)
    atol: EvaledFloat = Field(default=1.0e-6, gt=0.0)
    census_after_forcing: bool = True


class ModelConfig(BaseModel):
    """
    A validated description of a compartmental model simulated with the LNA.

    Examples:
        >>> from lnapath.model import ModelConfig
        >>> from lnapath.testing import sir_config
        >>> config = ModelConfig.model_validate(sir_config())
        >>> config.compartments
        ['S', 'I', 'R']
        >>> config.events["infection"].source, config.events["infection"].destination
        ('S', 'I')
        >>> config.initial_volume_names
        ['S_0', 'I_0', 'R_0']
    """

    name: str
    compartments: list[str] = Field(min_length=1)
    parameters: dict[str, EvaledFloat] = Field(default_factory=dict)
    constants: dict[str, EvaledFloat] = Field(default_factory=dict)
    initial_volumes: dict[str, EvaledFloat]
    events: dict[str, EventConfig] = Field(min_length=1)
    times: TimesConfig
    tcovar: TcovarConfig | None = None
    forcings: dict[str, ForcingConfig] = Field(default_factory=dict)
    lna: LNASettings = Field(default_factory=LNASettings)

    @model_validator(mode="after")
    def _validate_references(self) -> "ModelConfig":
        compartments = set(self.compartments)
        if len(compartments) != len(self.compartments):
            raise ValueError("Compartment names must be unique.")
        if set(self.initial_volumes) != compartments:
            raise ValueError(
                "Initial volumes must be given for exactly the compartments "
                f"{', '.join(self.compartments)}, was given for "
                f"{', '.join(self.initial_volumes)}."
            )
        if negative := [c for c, v in self.initial_volumes.items() if v < 0.0]:
            raise ValueError(
                f"Initial volumes must be non-negative, negative for {', '.join(negative)}."
            )
        for name, event in self.events.items():
            for comp in (event.source, event.destination):
                if comp is not None and comp not in compartments:
                    raise ValueError(
                        f"Event '{name}' refers to an unknown compartment, '{comp}'."
                    )
        tcovar_names = self.tcovar.names if self.tcovar is not None else []
        for name, forcing in self.forcings.items():
            if forcing.tcovar not in tcovar_names:
                raise ValueError(
                    f"Forcing '{name}' refers to an unknown covariate, '{forcing.tcovar}'."
                )
            for comp in [*forcing.source, forcing.destination]:
                if comp is not None and comp not in compartments:
                    raise ValueError(
                        f"Forcing '{name}' refers to an unknown compartment, '{comp}'."
                    )
        symbols = [
            "t",
            *self.compartments,
            *self.parameters,
            *self.initial_volume_names,
            *self.constants,
            *tcovar_names,
        ]
        if duplicated := sorted({s for s in symbols if symbols.count(s) > 1}):
            raise ValueError(
                "Compartment, parameter, constant, and covariate names must be unique "
                f"and cannot be 't', found duplicates {', '.join(duplicated)}."
            )
        return self

    @property
    def initial_volume_names(self) -> list[str]:
        return [f"{comp}_0" for comp in self.compartments]

    @classmethod
    def from_confuse(cls, config: confuse.ConfigView) -> "ModelConfig":
        """Validate a model description held in a confuse configuration."""
        return cls.model_validate(config.flatten())


class LNAModel:
    """
    A compartmental model compiled into the inputs of the LNA path engine.

    Attributes:
        config: The validated model description.
        compartments: The compartment names, in stoichiometry row order.
        events: The event names, in stoichiometry column order.
        stoich_matrix: The (n_comps, n_events) stoichiometry matrix.
        lna_times: The LNA time grid.
        layout: The column layout of `lna_pars`.
        lna_pars: The (n_times, n_cols) parameter trajectory.
        param_update_inds: Flags marking where the covariates change.
        forcings: The forcing schedule, or `None` if the model has no forcings.

    Examples:
        >>> from lnapath.model import LNAModel
        >>> from lnapath.testing import sir_config
        >>> model = LNAModel(sir_config())
        >>> model.stoich_matrix
        array([[-1.,  0.],
               [ 1., -1.],
               [ 0.,  1.]])
        >>> model.layout.names
        ['beta', 'gamma', 'S_0', 'I_0', 'R_0']
        >>> model.hazard(0.0, np.array([990.0, 10.0, 0.0]), model.lna_pars[0]).round(6)
        array([4.95, 2.5 ])
    """

    def __init__(self, config: ModelConfig | dict[str, Any] | confuse.ConfigView) -> None:
        if isinstance(config, confuse.ConfigView):
            config = ModelConfig.from_confuse(config)
        elif isinstance(config, dict):
            config = ModelConfig.model_validate(config)
        self.config = config
        self.compartments = list(config.compartments)
        self.events = list(config.events)
        self.stoich_matrix = self._build_stoich_matrix()
        self.lna_times = config.times.grid()
        self.layout = self._build_layout()
        self.lna_pars = self._build_lna_pars()
        self.param_update_inds = self._build_param_update_inds()
        self.forcings = self._build_forcings()
        self._hazard, self._hazard_jacobian = self._compile_rates()
        self._assembler: LNAPathAssembler | None = None

    def __str__(self) -> str:
        return (
            f"LNAModel '{self.config.name}': {len(self.compartments)} compartments, "
            f"{len(self.events)} events, {len(self.lna_times)} times"
        )

    def hazard(
        self,
        t: float,
        volumes: npt.NDArray[np.float64],
        snapshot: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        """The event hazards at time `t` for the given volumes and parameters."""
        return np.asarray(self._hazard(t, volumes, snapshot), dtype=np.float64)

    def hazard_jacobian(
        self,
        t: float,
        volumes: npt.NDArray[np.float64],
        snapshot: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        """The (n_events, n_comps) Jacobian of the hazards with respect to volumes."""
        jac = np.asarray(self._hazard_jacobian(t, volumes, snapshot), dtype=np.float64)
        return jac.reshape(len(self.events), len(self.compartments))

    def solver(self) -> ScipyLNASolver:
        """Create a new ODE interval solver for this model."""
        return ScipyLNASolver(
            hazard=self.hazard,
            hazard_jacobian=self.hazard_jacobian,
            stoich_matrix=self.stoich_matrix,
            init_start=self.layout.init_start,
            method=self.config.lna.method,
            rtol=self.config.lna.rtol,
            atol=self.config.lna.atol,
        )

    def assembler(self) -> LNAPathAssembler:
        """Create a new path assembler, with its own solver, for this model."""
        return LNAPathAssembler(
            stoich_matrix=self.stoich_matrix,
            init_start=self.layout.init_start,
            tcovar_inds=self.layout.tcovar_inds,
            solver=self.solver(),
            forcings=self.forcings,
            step_size=self.config.lna.step_size,
            census_after_forcing=self.config.lna.census_after_forcing,
        )

    def simulate(
        self,
        rng: np.random.Generator | None = None,
        draws: npt.ArrayLike | None = None,
        max_attempts: int | None = None,
    ) -> LNAPathResult:
        """
        Simulate an LNA path of this model.

        Args:
            rng: The generator to sample draws from, required unless `draws` is
                given.
            draws: Draws for the first attempt, or `None` to sample them.
            max_attempts: The retry budget, defaults to `lna.max_attempts` of the
                configuration.

        Returns:
            Either an `LNAPath` or the `PathFailure` of the last attempt.
        """
        if self._assembler is None:
            self._assembler = self.assembler()
        return propose_lna(
            self._assembler,
            self.lna_times,
            self.lna_pars,
            self.param_update_inds,
            draws=draws,
            max_attempts=self.config.lna.max_attempts if max_attempts is None else max_attempts,
            rng=rng,
        )

    def _build_stoich_matrix(self) -> npt.NDArray[np.float64]:
        stoich = np.zeros((len(self.compartments), len(self.events)))
        for j, event in enumerate(self.config.events.values()):
            if event.source is not None:
                stoich[self.compartments.index(event.source), j] -= 1.0
            if event.destination is not None:
                stoich[self.compartments.index(event.destination), j] += 1.0
        return stoich

    def _build_layout(self) -> LNAParameterLayout:
        tcovar_names = self.config.tcovar.names if self.config.tcovar is not None else []
        names = [
            *self.config.parameters,
            *self.config.initial_volume_names,
            *self.config.constants,
            *tcovar_names,
        ]
        return LNAParameterLayout(
            names=names,
            n_params=len(self.config.parameters),
            n_consts=len(self.compartments) + len(self.config.constants),
            n_tcovar=len(tcovar_names),
            init_start=len(self.config.parameters),
            n_comps=len(self.compartments),
        )

    def _build_lna_pars(self) -> npt.NDArray[np.float64]:
        fixed = [
            *self.config.parameters.values(),
            *(self.config.initial_volumes[c] for c in self.compartments),
            *self.config.constants.values(),
        ]
        lna_pars = np.empty((len(self.lna_times), len(self.layout.names)))
        lna_pars[:, : len(fixed)] = np.asarray(fixed, dtype=np.float64)
        if self.config.tcovar is not None:
            lna_pars[:, self.layout.tcovar_inds] = self.config.tcovar.at(
                self._snapped_tcovar_times()
            )
        return lna_pars

    def _snapped_tcovar_times(self) -> npt.NDArray[np.float64]:
        # grid times within rounding of a covariate change time take that exact time
        times = self.lna_times.copy()
        change_times = np.asarray(self.config.tcovar.times, dtype=np.float64)
        close = np.isclose(change_times[:, None], times[None, :])
        change_inds, grid_inds = np.nonzero(close)
        times[grid_inds] = change_times[change_inds]
        return times

    def _build_param_update_inds(self) -> npt.NDArray[np.bool_]:
        flags = np.zeros(len(self.lna_times), dtype=np.bool_)
        if self.layout.n_tcovar:
            tcovar = self.lna_pars[:, self.layout.tcovar_inds]
            flags[1:] = np.any(tcovar[1:] != tcovar[:-1], axis=1)
        return flags

    def _build_forcings(self) -> ForcingSchedule | None:
        if not self.config.forcings:
            return None
        tcov_inds = [self.layout.index(f.tcovar) for f in self.config.forcings.values()]
        tcovar = self.config.tcovar
        table = np.column_stack([tcovar.values[f.tcovar] for f in self.config.forcings.values()])
        forcing_times = np.asarray(tcovar.times)[np.any(table != 0.0, axis=1)]
        # forcings are impulses at the covariate times, which must be grid times
        on_grid = np.isclose(forcing_times[:, None], self.lna_times[None, :])
        if not np.all(np.any(on_grid, axis=1)):
            missing = forcing_times[~np.any(on_grid, axis=1)]
            raise ValueError(
                f"Forcings occur at times {missing.tolist()} which are not LNA times."
            )
        return ForcingSchedule.from_compartments(
            n_comps=len(self.compartments),
            sources=[
                [self.compartments.index(c) for c in f.source]
                for f in self.config.forcings.values()
            ],
            destinations=[
                None if f.destination is None else self.compartments.index(f.destination)
                for f in self.config.forcings.values()
            ],
            forcing_tcov_inds=tcov_inds,
            forcing_inds=np.any(on_grid, axis=0),
        )

    def _compile_rates(self):
        t = sp.Symbol("t")
        comp_symbols = [sp.Symbol(c) for c in self.compartments]
        par_symbols = [sp.Symbol(n) for n in self.layout.names]
        # bind every name explicitly so e.g. 'S', 'I', or 'gamma' are not sympy objects
        namespace = {s.name: s for s in [t, *comp_symbols, *par_symbols]}
        known = set(namespace.values())
        rates = []
        for name, event in self.config.events.items():
            try:
                rate = sp.sympify(event.rate, locals=namespace)
            except (sp.SympifyError, SyntaxError, TypeError) as e:
                raise ValueError(
                    f"Cannot parse the rate of event '{name}', '{event.rate}'."
                ) from e
            if unknown := sorted(str(s) for s in rate.free_symbols - known):
                raise ValueError(
                    f"The rate of event '{name}' uses unknown names {', '.join(unknown)}."
                )
            rates.append(rate)
        jacobian = sp.Matrix(rates).jacobian(comp_symbols)
        args = (t, comp_symbols, par_symbols)
        logger.debug("Compiled rates %s for model '%s'", rates, self.config.name)
        return sp.lambdify(args, rates, modules="numpy"), sp.lambdify(
            args, jacobian, modules="numpy"
        )
