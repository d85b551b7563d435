"""Unit tests for `lnapath.lna.map_draws_to_lna` and `LNAPathAssembler.map_draws`."""

import numpy as np
import pytest
import scipy.linalg

from lnapath import lna
from lnapath.diffusion import diffusion_sqrt
from lnapath.errors import FailureKind, InvalidInputError, PathFailure
from lnapath.forcing import ForcingSchedule
from lnapath.lna import LNAPath, LNAPathAssembler, map_draws_to_lna
from lnapath.testing import FixedMomentSolver


SI_STOICH = np.array([[-1.0], [1.0]])


def _si_inputs(n_times: int = 3, s0: float = 100.0, i0: float = 0.0):
    return dict(
        lna_times=np.arange(n_times, dtype=np.float64),
        lna_pars=np.tile([s0, i0], (n_times, 1)),
        init_start=0,
        tcovar_inds=[],
        param_update_inds=np.zeros(n_times, dtype=bool),
        stoich_matrix=SI_STOICH,
    )


def test_zero_moments_give_constant_path() -> None:
    path = map_draws_to_lna(
        draws=np.zeros((1, 4)),
        solver=FixedMomentSolver(drift=[0.0], diffusion=[[0.0]]),
        **_si_inputs(n_times=5),
    )
    assert isinstance(path, LNAPath)
    assert path.ok
    assert np.array_equal(path.times, np.arange(5.0))
    assert np.all(path.incidence[:, 1:] == 0.0)
    assert np.all(path.prevalence[:, 1:] == [100.0, 0.0])


def test_single_interval_increment() -> None:
    path = map_draws_to_lna(
        draws=np.zeros((1, 1)),
        solver=FixedMomentSolver(drift=[0.1], diffusion=[[0.01]]),
        **_si_inputs(n_times=2),
    )
    increment = np.expm1(0.1)
    assert path.incidence[1, 1] == pytest.approx(0.10517091807564763)
    assert np.allclose(path.prevalence[1, 1:], [100.0 - increment, increment])
    assert np.array_equal(path.incidence[0], [0.0, 0.0])


def test_draws_scaled_by_diffusion_sqrt() -> None:
    path = map_draws_to_lna(
        draws=np.array([[2.0]]),
        solver=FixedMomentSolver(drift=[0.5], diffusion=[[0.04]]),
        **_si_inputs(n_times=2),
    )
    assert path.incidence[1, 1] == pytest.approx(np.expm1(0.5 + 0.2 * 2.0))


def test_path_is_deterministic_in_draws() -> None:
    rng = np.random.default_rng(11)
    draws = rng.standard_normal((2, 6))
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    inputs = dict(
        lna_times=np.linspace(0.0, 3.0, 7),
        lna_pars=np.tile([500.0, 50.0, 0.0], (7, 1)),
        init_start=0,
        tcovar_inds=[],
        param_update_inds=np.zeros(7, dtype=bool),
        stoich_matrix=stoich,
    )
    moments = dict(drift=[2.0, 2.5], diffusion=[[0.02, 0.001], [0.001, 0.01]])
    first = map_draws_to_lna(draws=draws, solver=FixedMomentSolver(**moments), **inputs)
    second = map_draws_to_lna(draws=draws, solver=FixedMomentSolver(**moments), **inputs)
    assert first.ok and second.ok
    assert np.array_equal(first.incidence, second.incidence)
    assert np.array_equal(first.prevalence, second.prevalence)


def test_flat_draws_are_reshaped_by_column() -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    flat = np.array([0.1, 0.2, 0.3, 0.4])
    path = map_draws_to_lna(
        lna_times=[0.0, 1.0, 2.0],
        draws=flat,
        lna_pars=np.tile([100.0, 100.0, 0.0], (3, 1)),
        init_start=0,
        tcovar_inds=[],
        param_update_inds=np.zeros(3, dtype=bool),
        stoich_matrix=stoich,
        solver=FixedMomentSolver(drift=[0.0, 0.0], diffusion=np.eye(2)),
    )
    assert np.array_equal(path.draws, [[0.1, 0.3], [0.2, 0.4]])
    assert path.incidence[1, 1] == pytest.approx(np.expm1(0.1))
    assert path.incidence[2, 2] == pytest.approx(np.expm1(0.4))


def test_non_finite_moments_integration_failure() -> None:
    result = map_draws_to_lna(
        draws=np.zeros((1, 2)),
        solver=FixedMomentSolver(
            drift=[[0.1], [0.1]], diffusion=[[[0.01]], [[np.nan]]]
        ),
        **_si_inputs(n_times=3),
    )
    assert isinstance(result, PathFailure)
    assert result.kind is FailureKind.INTEGRATION_FAILURE
    assert result.interval == 1


def test_zero_diffusion_uses_drift_only() -> None:
    path = map_draws_to_lna(
        draws=np.full((1, 2), 5.0),
        solver=FixedMomentSolver(drift=[0.2], diffusion=[[0.0]]),
        **_si_inputs(n_times=3),
    )
    assert np.allclose(path.incidence[1:, 1], np.expm1(0.2))


def test_negative_increment_failure() -> None:
    result = map_draws_to_lna(
        draws=np.array([[-50.0]]),
        solver=FixedMomentSolver(drift=[0.0], diffusion=[[1.0]]),
        **_si_inputs(n_times=2),
    )
    assert result.kind is FailureKind.NEGATIVE_INCREMENT
    assert result.interval == 0
    assert not result.ok


def test_negative_volume_failure() -> None:
    # an increment of 1000 out of a compartment holding 100
    result = map_draws_to_lna(
        draws=np.zeros((1, 2)),
        solver=FixedMomentSolver(drift=[np.log(1001.0)], diffusion=[[0.0]]),
        **_si_inputs(n_times=3),
    )
    assert result.kind is FailureKind.NEGATIVE_VOLUME
    assert result.interval == 0


def test_snapshot_volumes_track_prevalence() -> None:
    solver = FixedMomentSolver(drift=[0.3], diffusion=[[0.05]])
    path = map_draws_to_lna(
        draws=np.random.default_rng(3).standard_normal((1, 4)) * 0.1,
        solver=solver,
        **_si_inputs(n_times=5),
    )
    assert path.ok
    assert len(solver.snapshots) == 5
    for snapshot, row in zip(solver.snapshots, path.prevalence):
        assert np.array_equal(snapshot[:2], row[1:])
    assert [i[:2] for i in solver.intervals] == [(0.0, 1.0), (1.0, 2.0), (2.0, 3.0), (3.0, 4.0)]
    assert all(i[2] == 1.0e-6 for i in solver.intervals)


def test_covariates_refreshed_only_when_flagged() -> None:
    # columns: S_0, I_0, covariate
    lna_pars = np.array(
        [[100.0, 0.0, 1.0], [100.0, 0.0, 2.0], [100.0, 0.0, 3.0], [100.0, 0.0, 4.0]]
    )
    solver = FixedMomentSolver(drift=[0.0], diffusion=[[0.0]])
    path = map_draws_to_lna(
        lna_times=[0.0, 1.0, 2.0, 3.0],
        draws=np.zeros((1, 3)),
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[2],
        param_update_inds=[False, False, True, False],
        stoich_matrix=SI_STOICH,
        solver=solver,
    )
    assert path.ok
    assert [s[2] for s in solver.snapshots] == [1.0, 1.0, 3.0, 3.0]


def _vaccination_schedule(forcing_inds: list[bool]) -> ForcingSchedule:
    # move mass from S (0) into R (2), magnitude in column 3
    return ForcingSchedule.from_compartments(
        n_comps=3,
        sources=[[0]],
        destinations=[2],
        forcing_tcov_inds=[3],
        forcing_inds=forcing_inds,
    )


@pytest.mark.parametrize("census_after_forcing", (True, False))
def test_forcing_recomputes_volumes(census_after_forcing: bool) -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    lna_pars = np.array([[100.0, 0.0, 0.0, 0.0], [100.0, 0.0, 0.0, 10.0], [100.0, 0.0, 0.0, 0.0]])
    solver = FixedMomentSolver(drift=[0.0, 0.0], diffusion=np.zeros((2, 2)))
    path = map_draws_to_lna(
        lna_times=[0.0, 1.0, 2.0],
        draws=np.zeros((2, 2)),
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[3],
        param_update_inds=[False, True, True],
        stoich_matrix=stoich,
        solver=solver,
        forcings=_vaccination_schedule([False, True, False]),
        census_after_forcing=census_after_forcing,
    )
    assert path.ok
    expected_row = [90.0, 0.0, 10.0] if census_after_forcing else [100.0, 0.0, 0.0]
    assert np.allclose(path.prevalence[1, 1:], expected_row)
    assert np.allclose(path.prevalence[2, 1:], [90.0, 0.0, 10.0])
    # the solver always continues from the forced volumes
    assert np.allclose(solver.snapshots[1][:3], [90.0, 0.0, 10.0])


def test_forcing_at_first_time_recorded_in_first_row() -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    lna_pars = np.array([[100.0, 0.0, 0.0, 25.0], [100.0, 0.0, 0.0, 0.0]])
    solver = FixedMomentSolver(drift=[0.0, 0.0], diffusion=np.zeros((2, 2)))
    path = map_draws_to_lna(
        lna_times=[0.0, 1.0],
        draws=np.zeros((2, 1)),
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[3],
        param_update_inds=[False, False],
        stoich_matrix=stoich,
        solver=solver,
        forcings=_vaccination_schedule([True, False]),
    )
    assert np.allclose(path.prevalence[0, 1:], [75.0, 0.0, 25.0])
    assert np.allclose(solver.snapshots[0][:3], [75.0, 0.0, 25.0])
    assert len(solver.snapshots) == 2


@pytest.mark.parametrize(
    ("forcing_inds", "expected_interval"),
    (([True, False, False], None), ([False, False, True], 1)),
)
def test_negative_volume_after_forcing(
    forcing_inds: list[bool], expected_interval: int | None
) -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    # a negative magnitude moves mass out of the empty R compartment
    lna_pars = np.tile([100.0, 0.0, 0.0, -10.0], (3, 1))
    result = map_draws_to_lna(
        lna_times=[0.0, 1.0, 2.0],
        draws=np.zeros((2, 2)),
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[3],
        param_update_inds=np.zeros(3, dtype=bool),
        stoich_matrix=stoich,
        solver=FixedMomentSolver(drift=[0.0, 0.0], diffusion=np.zeros((2, 2))),
        forcings=_vaccination_schedule(forcing_inds),
    )
    assert result.kind is FailureKind.NEGATIVE_VOLUME
    assert result.interval == expected_interval


def test_forcing_from_empty_source_is_noop() -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    lna_pars = np.tile([0.0, 10.0, 0.0, 5.0], (2, 1))
    path = map_draws_to_lna(
        lna_times=[0.0, 1.0],
        draws=np.zeros((2, 1)),
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[3],
        param_update_inds=[False, False],
        stoich_matrix=stoich,
        solver=FixedMomentSolver(drift=[0.0, 0.0], diffusion=np.zeros((2, 2))),
        forcings=_vaccination_schedule([True, True]),
    )
    assert np.array_equal(path.prevalence[:, 1:], [[0.0, 10.0, 0.0], [0.0, 10.0, 0.0]])


@pytest.mark.parametrize(
    ("overrides", "match"),
    (
        ({"lna_times": [0.0, 2.0, 1.0]}, "strictly increasing"),
        ({"lna_times": [0.0, np.inf, 2.0]}, "strictly increasing"),
        ({"draws": np.zeros((2, 2))}, "`draws` must have shape"),
        ({"draws": np.array([[0.0, np.nan]])}, "`draws` must be finite"),
        ({"lna_pars": np.zeros((2, 2))}, "one row per time"),
        ({"lna_pars": np.zeros((3, 1))}, "do not fit"),
        ({"param_update_inds": [False, True]}, "`param_update_inds` must have length"),
        ({"tcovar_inds": [5]}, "`tcovar_inds` must index"),
    ),
)
def test_invalid_inputs_raise(overrides: dict, match: str) -> None:
    inputs = {
        **_si_inputs(n_times=3),
        "draws": np.zeros((1, 2)),
        "solver": FixedMomentSolver(drift=[0.0], diffusion=[[0.0]]),
    }
    inputs.update(overrides)
    with pytest.raises(InvalidInputError, match=match):
        map_draws_to_lna(**inputs)


def test_invalid_inputs_detected_before_integration() -> None:
    solver = FixedMomentSolver(drift=[0.0], diffusion=[[0.0]])
    with pytest.raises(InvalidInputError):
        map_draws_to_lna(
            draws=np.zeros((1, 5)), solver=solver, **_si_inputs(n_times=3)
        )
    assert solver.snapshots == [] and solver.intervals == []


@pytest.mark.parametrize("step_size", (0.0, -1.0))
def test_non_positive_step_size_raises(step_size: float) -> None:
    with pytest.raises(InvalidInputError, match="`step_size` must be positive"):
        LNAPathAssembler(
            SI_STOICH, 0, [], FixedMomentSolver([0.0], [[0.0]]), step_size=step_size
        )


def test_forcing_schedule_length_mismatch_raises() -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    assembler = LNAPathAssembler(
        stoich,
        0,
        [3],
        FixedMomentSolver([0.0, 0.0], np.zeros((2, 2))),
        forcings=_vaccination_schedule([False, True]),
    )
    with pytest.raises(InvalidInputError, match="`forcing_inds` must have length"):
        assembler.map_draws(
            [0.0, 1.0, 2.0], np.zeros((2, 2)), np.zeros((3, 4)), np.zeros(3, dtype=bool)
        )


def test_forcing_schedule_compartment_mismatch_raises() -> None:
    with pytest.raises(InvalidInputError, match="covers 3 compartments"):
        LNAPathAssembler(
            SI_STOICH,
            0,
            [],
            FixedMomentSolver([0.0], [[0.0]]),
            forcings=_vaccination_schedule([False, True]),
        )


def test_two_interval_constant_drift_path() -> None:
    path = map_draws_to_lna(
        draws=np.zeros((1, 2)),
        solver=FixedMomentSolver(drift=[0.1], diffusion=0.01 * np.eye(1)),
        **_si_inputs(n_times=3),
    )
    increment = np.expm1(0.1)
    assert path.ok
    assert np.allclose(path.incidence[1:, 1], [0.10517091807564763] * 2)
    assert np.allclose(
        path.prevalence[:, 1:],
        [[100.0, 0.0], [100.0 - increment, increment], [100.0 - 2 * increment, 2 * increment]],
    )


def test_decomposition_failure_reports_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def failing_sqrt(diffusion, out=None):
        calls.append(diffusion.copy())
        if len(calls) == 2:
            raise scipy.linalg.LinAlgError("SVD did not converge")
        return diffusion_sqrt(diffusion, out=out)

    monkeypatch.setattr(lna, "diffusion_sqrt", failing_sqrt)
    result = map_draws_to_lna(
        draws=np.zeros((1, 3)),
        solver=FixedMomentSolver(drift=[0.1], diffusion=[[0.01]]),
        **_si_inputs(n_times=4),
    )
    assert isinstance(result, PathFailure)
    assert result.kind is FailureKind.DECOMPOSITION_FAILURE
    assert result.interval == 1
    assert "SVD did not converge" in result.message
    assert len(calls) == 2


def test_prevalence_advances_by_increments_and_forcings() -> None:
    stoich = np.array([[-1.0, 0.0], [1.0, -1.0], [0.0, 1.0]])
    # columns: S_0, I_0, R_0, forcing magnitude
    lna_pars = np.tile([500.0, 50.0, 0.0, 0.0], (5, 1))
    lna_pars[2, 3] = 20.0
    path = map_draws_to_lna(
        lna_times=np.arange(5.0),
        draws=np.random.default_rng(7).standard_normal((2, 4)) * 0.1,
        lna_pars=lna_pars,
        init_start=0,
        tcovar_inds=[3],
        param_update_inds=[False, False, True, True, False],
        stoich_matrix=stoich,
        solver=FixedMomentSolver(
            drift=[2.0, 2.5], diffusion=[[0.02, 0.001], [0.001, 0.01]]
        ),
        forcings=_vaccination_schedule([False, False, True, False, False]),
    )
    assert path.ok
    assert np.array_equal(path.incidence[:, 0], path.prevalence[:, 0])
    forcing_delta = np.zeros((5, 3))
    forcing_delta[2] = [-20.0, 0.0, 20.0]
    for j in range(4):
        expected = (
            path.prevalence[j, 1:] + stoich @ path.incidence[j + 1, 1:] + forcing_delta[j + 1]
        )
        assert np.allclose(path.prevalence[j + 1, 1:], expected)
