"""Unit tests for `lnapath.model.LNAModel`."""

import numpy as np
import pytest

from lnapath.errors import FailureKind
from lnapath.lna import LNAPath, LNAPathAssembler
from lnapath.lna_ode import ScipyLNASolver
from lnapath.model import LNAModel, ModelConfig
from lnapath.testing import create_confuse_configview_from_dict, sir_config


def _vaccination_config(**overrides):
    return sir_config(
        tcovar={"times": [0, 3, 4], "values": {"vacc": [0, 50, 0]}},
        forcings={"vaccination": {"tcovar": "vacc", "from": "S", "to": "R"}},
        **overrides,
    )


def test_accepts_config_dict_and_confuse_view() -> None:
    config = sir_config()
    from_model = LNAModel(ModelConfig.model_validate(config))
    from_dict = LNAModel(config)
    from_view = LNAModel(create_confuse_configview_from_dict(config))
    for model in (from_dict, from_view):
        assert model.compartments == from_model.compartments
        assert np.array_equal(model.lna_pars, from_model.lna_pars)


def test_structure(sir_model: LNAModel) -> None:
    assert sir_model.compartments == ["S", "I", "R"]
    assert sir_model.events == ["infection", "recovery"]
    assert np.array_equal(sir_model.lna_times, np.arange(11.0))
    assert sir_model.lna_pars.shape == (11, 5)
    assert np.all(sir_model.lna_pars[:, sir_model.layout.initdist_inds] == [990.0, 10.0, 0.0])
    assert sir_model.forcings is None
    assert not np.any(sir_model.param_update_inds)
    assert "3 compartments" in str(sir_model)


def test_lna_pars_column_order() -> None:
    model = LNAModel(_vaccination_config(constants={"N": 1000}))
    assert model.layout.names == ["beta", "gamma", "S_0", "I_0", "R_0", "N", "vacc"]
    assert model.layout.init_start == 2
    assert model.layout.tcovar_inds == [6]
    assert model.lna_pars[:, 5].tolist() == [1000.0] * 11


def test_covariates_step_function_and_update_flags() -> None:
    model = LNAModel(_vaccination_config())
    vacc = model.lna_pars[:, model.layout.index("vacc")]
    assert vacc.tolist() == [0, 0, 0, 50, 0, 0, 0, 0, 0, 0, 0]
    assert np.flatnonzero(model.param_update_inds).tolist() == [3, 4]


def test_forcings_fire_at_non_zero_covariate_times() -> None:
    model = LNAModel(_vaccination_config())
    assert np.flatnonzero(model.forcings.forcing_inds).tolist() == [3]
    assert model.forcings.forcing_tcov_inds.tolist() == [model.layout.index("vacc")]
    assert np.array_equal(model.forcings.forcings_out[:, 0], [1.0, 0.0, 0.0])


def test_forcing_off_grid_value_error() -> None:
    config = _vaccination_config()
    config["tcovar"]["times"] = [0, 3.5, 4]
    with pytest.raises(ValueError, match=r"Forcings occur at times \[3.5\]"):
        LNAModel(config)


def test_covariate_time_matched_to_rounded_grid_time() -> None:
    # 0.0 + 0.3 * 3 is 0.8999999999999999, just below the covariate change at 0.9
    model = LNAModel(
        sir_config(
            times={"start": 0, "end": 3, "dt": 0.3},
            tcovar={"times": [0, 0.9], "values": {"vacc": [0, 20]}},
            forcings={"vaccination": {"tcovar": "vacc", "from": ["S"], "to": "R"}},
        )
    )
    vacc = model.layout.index("vacc")
    assert model.lna_times[3] < 0.9
    assert np.flatnonzero(model.forcings.forcing_inds).tolist() == [3]
    assert np.all(model.lna_pars[model.forcings.forcing_inds, vacc] == 20.0)
    assert model.lna_pars[:3, vacc].tolist() == [0.0, 0.0, 0.0]
    assert np.flatnonzero(model.param_update_inds).tolist() == [3]


def test_hazard_and_jacobian(sir_model: LNAModel) -> None:
    x = np.array([900.0, 50.0, 50.0])
    snapshot = sir_model.lna_pars[0]
    assert np.allclose(sir_model.hazard(2.0, x, snapshot), [0.0005 * 900 * 50, 0.25 * 50])
    assert np.allclose(
        sir_model.hazard_jacobian(2.0, x, snapshot),
        [[0.0005 * 50, 0.0005 * 900, 0.0], [0.0, 0.25, 0.0]],
    )


def test_constant_rate_jacobian_shape() -> None:
    config = sir_config(
        events={
            "import": {"to": "I", "rate": "2"},
            "recovery": {"from": "I", "to": "R", "rate": "gamma * I"},
        }
    )
    model = LNAModel(config)
    jac = model.hazard_jacobian(0.0, np.array([1.0, 1.0, 1.0]), model.lna_pars[0])
    assert jac.shape == (2, 3)
    assert np.array_equal(model.stoich_matrix[:, 0], [0.0, 1.0, 0.0])


def test_time_dependent_rate() -> None:
    config = sir_config(
        events={"recovery": {"from": "I", "to": "R", "rate": "gamma * I * exp(-t)"}}
    )
    model = LNAModel(config)
    x = np.array([990.0, 10.0, 0.0])
    assert model.hazard(1.0, x, model.lna_pars[0])[0] == pytest.approx(2.5 * np.exp(-1.0))


@pytest.mark.parametrize(
    ("rate", "match"),
    (("beta * S * J", "unknown names J"), ("beta * (S", "Cannot parse the rate")),
)
def test_invalid_rate_value_error(rate: str, match: str) -> None:
    config = sir_config(
        events={"infection": {"from": "S", "to": "I", "rate": rate}}
    )
    with pytest.raises(ValueError, match=match):
        LNAModel(config)


def test_solver_and_assembler_settings() -> None:
    model = LNAModel(
        sir_config(lna={"step_size": "1/100", "method": "RK45", "census_after_forcing": False})
    )
    solver = model.solver()
    assert isinstance(solver, ScipyLNASolver)
    assert solver.method == "RK45"
    assembler = model.assembler()
    assert isinstance(assembler, LNAPathAssembler)
    assert assembler.step_size == 0.01
    assert assembler.census_after_forcing is False


def test_simulate_zero_draws_deterministic(sir_model: LNAModel) -> None:
    draws = np.zeros((2, 10))
    first = sir_model.simulate(draws=draws)
    second = LNAModel(sir_config()).simulate(draws=draws)
    assert isinstance(first, LNAPath)
    assert np.array_equal(first.prevalence, second.prevalence)
    # infections outpace recoveries early in the epidemic
    assert first.prevalence[1, 2] > 10.0


def test_simulate_conserves_population(sir_model: LNAModel, rng) -> None:
    path = sir_model.simulate(rng=rng, max_attempts=50)
    assert path.ok
    assert np.allclose(path.prevalence[:, 1:].sum(axis=1), 1000.0)
    assert np.all(path.incidence[1:, 1:] >= 0.0)
    assert np.all(np.diff(path.prevalence[:, 3]) >= 0.0)


def test_simulate_with_forcing() -> None:
    model = LNAModel(_vaccination_config())
    path = model.simulate(draws=np.zeros((2, 10)))
    assert path.ok
    forced = path.prevalence[3, 1:]
    assert np.allclose(path.prevalence[:, 1:].sum(axis=1), 1000.0)
    # the census at time 3 is taken after 50 susceptibles were moved to R
    assert forced[2] > 50.0


def test_simulate_failure_at_initialization() -> None:
    config = sir_config(
        tcovar={"times": [0], "values": {"pulse": [-50]}},
        forcings={"pulse": {"tcovar": "pulse", "from": "S", "to": "R"}},
    )
    result = LNAModel(config).simulate(rng=np.random.default_rng(1), max_attempts=3)
    assert not result.ok
    assert result.kind is FailureKind.NEGATIVE_VOLUME
    assert result.interval is None
