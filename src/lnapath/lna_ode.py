"""
A `scipy` based ODE interval solver for the log-scale counting process LNA.

Over each interval the LNA is restarted from zero: the log-scale increment of the
event counting process, `mu = log(N + 1)`, and its covariance `Sigma` both start at
zero and are integrated to the right endpoint, with the compartment volumes given by
`x = x0 + S @ expm1(mu)` for the volumes `x0` at the start of the interval.

With `h(t, x)` the event hazards the moment equations are::

    c = exp(-mu) - exp(-2 mu) / 2
    dmu/dt = c * h
    J = diag((exp(-2 mu) - exp(-mu)) * h) + (c * dh/dx) @ S @ diag(exp(mu))
    dSigma/dt = J @ Sigma + Sigma @ J.T + diag(exp(-2 mu) * h)
"""

__all__ = ("HazardFunction", "HazardJacobian", "ScipyLNASolver")


import logging
from typing import Callable, Literal

import numpy as np
import numpy.typing as npt
from scipy.integrate import solve_ivp

from .solver import n_lna_odes


logger = logging.getLogger(__name__)


HazardFunction = Callable[
    [float, npt.NDArray[np.float64], npt.NDArray[np.float64]], npt.NDArray[np.float64]
]
HazardJacobian = Callable[
    [float, npt.NDArray[np.float64], npt.NDArray[np.float64]], npt.NDArray[np.float64]
]


class ScipyLNASolver:
    """
    Integrate the LNA moment equations with `scipy.integrate.solve_ivp`.

    Attributes:
        stoich_matrix: The (n_comps, n_events) stoichiometry matrix.
        init_start: The offset of the compartment volumes in the parameter snapshot.
        method: The `solve_ivp` integration method.
        rtol: Relative tolerance passed to `solve_ivp`.
        atol: Absolute tolerance passed to `solve_ivp`.
    """

    def __init__(
        self,
        hazard: HazardFunction,
        hazard_jacobian: HazardJacobian,
        stoich_matrix: npt.NDArray[np.float64],
        init_start: int,
        method: Literal["RK45", "RK23", "DOP853", "Radau", "BDF", "LSODA"] = "LSODA",
        rtol: float = 1.0e-6,
        atol: float = 1.0e-6,
    ) -> None:
        """
        Initialize a solver.

        Args:
            hazard: A function of `(t, volumes, snapshot)` returning the hazard of each
                event.
            hazard_jacobian: A function of `(t, volumes, snapshot)` returning the
                (n_events, n_comps) Jacobian of the hazards with respect to the
                volumes.
            stoich_matrix: The (n_comps, n_events) stoichiometry matrix.
            init_start: The offset of the compartment volumes in the parameter
                snapshot.
            method: The `solve_ivp` integration method.
            rtol: Relative tolerance passed to `solve_ivp`.
            atol: Absolute tolerance passed to `solve_ivp`.
        """
        self.stoich_matrix = np.asarray(stoich_matrix, dtype=np.float64)
        self.init_start = init_start
        self.method = method
        self.rtol = rtol
        self.atol = atol
        self._hazard = hazard
        self._hazard_jacobian = hazard_jacobian
        self._n_comps, self._n_events = self.stoich_matrix.shape
        self._snapshot: npt.NDArray[np.float64] | None = None
        self._volumes: npt.NDArray[np.float64] | None = None

    def set_params(self, snapshot: npt.NDArray[np.float64]) -> None:
        self._snapshot = np.array(snapshot, dtype=np.float64)
        self._volumes = self._snapshot[self.init_start : self.init_start + self._n_comps]

    def integrate(
        self,
        buffer: npt.NDArray[np.float64],
        t_left: float,
        t_right: float,
        step_size: float,
    ) -> None:
        if self._snapshot is None:
            raise RuntimeError("`set_params` must be called before `integrate`.")
        sol = solve_ivp(
            self._rhs,
            (t_left, t_right),
            np.zeros(n_lna_odes(self._n_events)),
            method=self.method,
            first_step=min(step_size, t_right - t_left),
            rtol=self.rtol,
            atol=self.atol,
        )
        if not sol.success:
            logger.debug(
                "Integration over [%s, %s] failed: %s", t_left, t_right, sol.message
            )
            buffer[:] = np.nan
            return
        buffer[:] = sol.y[:, -1]

    def _rhs(self, t: float, y: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        n = self._n_events
        mu = y[:n]
        sigma = y[n:].reshape(n, n)
        exp_neg = np.exp(-mu)
        exp_neg2 = exp_neg * exp_neg
        coef = exp_neg - 0.5 * exp_neg2
        volumes = self._volumes + self.stoich_matrix @ np.expm1(mu)
        hazards = np.asarray(self._hazard(t, volumes, self._snapshot), dtype=np.float64)
        dh_dx = np.asarray(
            self._hazard_jacobian(t, volumes, self._snapshot), dtype=np.float64
        )
        jac = (coef[:, None] * dh_dx) @ (self.stoich_matrix * np.exp(mu)[None, :])
        jac[np.diag_indices(n)] += (exp_neg2 - exp_neg) * hazards
        dsigma = jac @ sigma + sigma @ jac.T
        dsigma[np.diag_indices(n)] += exp_neg2 * hazards
        return np.concatenate((coef * hazards, dsigma.ravel()))
