"""
Adaptation utilities used by MCMC samplers wrapped around the path engine.

These are small, statistically simple building blocks for the parameter updates of
an outer sampler: a componentwise random walk proposal whose kernel blends a unit
normal "nugget" step with a scaled normal step, and a Robbins-Monro recursion
adapting the interval widths of an automated factor slice sampler towards a target
ratio of expansions to expansions plus contractions.
"""

__all__ = ("SliceIntervalAdapter", "rw_adaptive", "update_interval_widths")


import numpy as np
import numpy.typing as npt


def rw_adaptive(
    params_prop: npt.NDArray[np.float64],
    params_cur: npt.NDArray[np.float64],
    ind: int,
    kernel_cov: npt.NDArray[np.float64],
    nugget: npt.NDArray[np.float64],
    rng: np.random.Generator,
) -> None:
    """
    Propose a new value for a single parameter with a componentwise random walk.

    The proposal is
    `params_cur[ind] + nugget[ind] * z1 + (1 - nugget[ind]) * z2 * kernel_cov[ind]`
    for independent standard normal `z1` and `z2`.

    Args:
        params_prop: The proposed parameter vector, component `ind` is written in
            place.
        params_cur: The current parameter vector.
        ind: The index of the component to update.
        kernel_cov: Per component proposal standard deviations.
        nugget: Per component blend factors between the unit nugget step and the
            scaled step.
        rng: The random number generator to draw from.

    Examples:
        >>> import numpy as np
        >>> from lnapath.adaptation import rw_adaptive
        >>> prop = np.zeros(2)
        >>> rw_adaptive(
        ...     prop, np.array([1.0, 2.0]), 1, np.ones(2), np.zeros(2),
        ...     np.random.default_rng(0),
        ... )
        >>> bool(prop[0] == 0.0 and prop[1] != 2.0)
        True
    """
    z1, z2 = rng.standard_normal(2)
    params_prop[ind] = (
        params_cur[ind] + nugget[ind] * z1 + (1.0 - nugget[ind]) * z2 * kernel_cov[ind]
    )


def update_interval_widths(
    interval_widths: npt.NDArray[np.float64],
    n_expansions: npt.NDArray[np.float64],
    n_contractions: npt.NDArray[np.float64],
    c_expansions: npt.NDArray[np.float64],
    c_contractions: npt.NDArray[np.float64],
    adaptation_factor: float,
    target_ratio: float,
) -> npt.NDArray[np.float64]:
    """
    Adapt slice sampler interval widths with a Robbins-Monro recursion.

    The widths are updated on the log scale as
    `log(w) + adaptation_factor * (n_exp / (n_exp + n_con) - target_ratio)`. Where a
    component saw no expansions or no contractions this round the corresponding count
    is replaced by the cumulative ratio `c_exp / (c_exp + c_con)`, and components
    without any cumulative activity use `target_ratio` so their width is unchanged.

    Args:
        interval_widths: The interval widths, updated in place.
        n_expansions: Expansions per component this round, reset to zero in place.
        n_contractions: Contractions per component this round, reset to zero in
            place.
        c_expansions: Cumulative expansions per component.
        c_contractions: Cumulative contractions per component.
        adaptation_factor: The Robbins-Monro step size.
        target_ratio: The target ratio of expansions to interval width changes.

    Returns:
        The cumulative slice ratios.

    Examples:
        >>> import numpy as np
        >>> widths = np.ones(2)
        >>> n_exp, n_con = np.array([3.0, 0.0]), np.array([1.0, 0.0])
        >>> ratios = update_interval_widths(
        ...     widths, n_exp, n_con, np.array([3.0, 0.0]), np.array([1.0, 0.0]), 1.0, 0.5
        ... )
        >>> ratios
        array([0.75, 0.5 ])
        >>> bool(widths[0] > 1.0), bool(widths[1] == 1.0)
        (True, True)
        >>> n_exp, n_con
        (array([0., 0.]), array([0., 0.]))
    """
    total = c_expansions + c_contractions
    slice_ratios = np.divide(
        c_expansions,
        total,
        out=np.full(total.shape, target_ratio, dtype=np.float64),
        where=total > 0,
    )
    exp_zeros = n_expansions == 0
    con_zeros = n_contractions == 0
    n_expansions[exp_zeros] = slice_ratios[exp_zeros]
    n_contractions[con_zeros] = slice_ratios[con_zeros]
    round_total = n_expansions + n_contractions
    round_ratio = np.divide(
        n_expansions,
        round_total,
        out=np.full(round_total.shape, target_ratio, dtype=np.float64),
        where=round_total > 0,
    )
    interval_widths[:] = np.exp(
        np.log(interval_widths) + adaptation_factor * (round_ratio - target_ratio)
    )
    n_expansions[:] = 0.0
    n_contractions[:] = 0.0
    return slice_ratios


class SliceIntervalAdapter:
    """
    Track expansions and contractions of a factor slice sampler and adapt widths.

    Attributes:
        interval_widths: The current interval widths, one per slice direction.
        adaptation_factor: The Robbins-Monro step size.
        target_ratio: The target ratio of expansions to interval width changes.
    """

    def __init__(
        self,
        interval_widths: npt.ArrayLike,
        adaptation_factor: float = 1.0,
        target_ratio: float = 0.5,
    ) -> None:
        self.interval_widths = np.array(interval_widths, dtype=np.float64)
        if self.interval_widths.ndim != 1 or np.any(self.interval_widths <= 0.0):
            raise ValueError("`interval_widths` must be a vector of positive values.")
        if not 0.0 < target_ratio < 1.0:
            raise ValueError(
                f"`target_ratio` must be strictly between zero and one, was {target_ratio}."
            )
        self.adaptation_factor = adaptation_factor
        self.target_ratio = target_ratio
        n = self.interval_widths.shape[0]
        self.n_expansions = np.zeros(n)
        self.n_contractions = np.zeros(n)
        self.c_expansions = np.zeros(n)
        self.c_contractions = np.zeros(n)
        self.slice_ratios = np.full(n, target_ratio)

    def record_expansion(self, direction: int) -> None:
        self.n_expansions[direction] += 1
        self.c_expansions[direction] += 1

    def record_contraction(self, direction: int) -> None:
        self.n_contractions[direction] += 1
        self.c_contractions[direction] += 1

    def update(self, adaptation_factor: float | None = None) -> npt.NDArray[np.float64]:
        """
        Adapt the interval widths from the counts recorded since the last update.

        Args:
            adaptation_factor: An override for the step size of this update, useful
                for decaying step sizes, or `None` to use `self.adaptation_factor`.

        Returns:
            The updated interval widths.
        """
        self.slice_ratios = update_interval_widths(
            self.interval_widths,
            self.n_expansions,
            self.n_contractions,
            self.c_expansions,
            self.c_contractions,
            self.adaptation_factor if adaptation_factor is None else adaptation_factor,
            self.target_ratio,
        )
        return self.interval_widths
