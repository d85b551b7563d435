"""
Forcings, scheduled instantaneous redistributions of compartment mass.

A forcing moves mass between compartments at a grid time, e.g. a vaccination pulse
moving susceptibles into a removed compartment or immigration into a susceptible
compartment. The amount moved is read from a column of the parameter trajectory and
is distributed over the source compartments proportionally to their occupancy.
"""

__all__ = ("ForcingSchedule", "apply_forcings")


from collections.abc import Sequence
from dataclasses import dataclass
import logging

from numba import jit
import numpy as np
import numpy.typing as npt


logger = logging.getLogger(__name__)


@jit(nopython=True)
def apply_forcings(volumes, magnitudes, forcings_out, forcing_transfers):
    """
    Apply forcings to compartment volumes in place.

    Forcings are applied in order, each one seeing the volumes as updated by the
    previous ones. When none of the weighted volumes of a forcing are non-zero there is
    no mass to move and that forcing is skipped.

    Args:
        volumes: Compartment volumes, modified in place.
        magnitudes: The amount moved by each forcing.
        forcings_out: Weights of shape (n_comps, n_forcings) selecting the source
            compartments of each forcing.
        forcing_transfers: Transfer matrices of shape (n_forcings, n_comps, n_comps).

    Returns:
        The `volumes` array.
    """
    n_comps = volumes.shape[0]
    dist = np.zeros(n_comps)
    for k in range(magnitudes.shape[0]):
        total = 0.0
        for i in range(n_comps):
            dist[i] = forcings_out[i, k] * volumes[i]
            total += abs(dist[i])
        if total == 0.0:
            continue
        # all deltas computed from the same distribution before volumes change
        delta = np.zeros(n_comps)
        for i in range(n_comps):
            for m in range(n_comps):
                delta[i] += forcing_transfers[k, i, m] * dist[m] / total * magnitudes[k]
        for i in range(n_comps):
            volumes[i] += delta[i]
    return volumes


@dataclass(frozen=True)
class ForcingSchedule:
    """
    When and how forcings are applied along the time grid.

    Attributes:
        forcing_inds: Boolean array over the grid times marking where forcings occur.
        forcing_tcov_inds: For each forcing, the column of the parameter trajectory
            holding its magnitude.
        forcings_out: Weights of shape (n_comps, n_forcings) over the compartments
            mass is drawn from.
        forcing_transfers: Transfer matrices of shape (n_forcings, n_comps, n_comps)
            mapping the distributed mass to volume changes.

    Examples:
        >>> import numpy as np
        >>> from lnapath.forcing import ForcingSchedule
        >>> schedule = ForcingSchedule.from_compartments(
        ...     n_comps=3,
        ...     sources=[[0]],
        ...     destinations=[2],
        ...     forcing_tcov_inds=[4],
        ...     forcing_inds=[False, True, False],
        ... )
        >>> schedule.forcing_transfers[0]
        array([[-1.,  0.,  0.],
               [ 0.,  0.,  0.],
               [ 1.,  0.,  0.]])
        >>> volumes = np.array([90.0, 10.0, 0.0])
        >>> schedule.apply(volumes, np.array([0.0, 0.0, 0.0, 0.0, 5.0]))
        array([85., 10.,  5.])
    """

    forcing_inds: npt.NDArray[np.bool_]
    forcing_tcov_inds: npt.NDArray[np.int64]
    forcings_out: npt.NDArray[np.float64]
    forcing_transfers: npt.NDArray[np.float64]

    def __post_init__(self) -> None:
        object.__setattr__(self, "forcing_inds", np.asarray(self.forcing_inds, dtype=np.bool_))
        object.__setattr__(
            self, "forcing_tcov_inds", np.asarray(self.forcing_tcov_inds, dtype=np.int64)
        )
        object.__setattr__(
            self, "forcings_out", np.asarray(self.forcings_out, dtype=np.float64)
        )
        object.__setattr__(
            self, "forcing_transfers", np.asarray(self.forcing_transfers, dtype=np.float64)
        )
        if self.forcing_inds.ndim != 1 or self.forcing_tcov_inds.ndim != 1:
            raise ValueError(
                "`forcing_inds` and `forcing_tcov_inds` must be one dimensional."
            )
        n_forcings = self.forcing_tcov_inds.shape[0]
        if self.forcings_out.ndim != 2 or self.forcings_out.shape[1] != n_forcings:
            raise ValueError(
                f"`forcings_out` must have shape (n_comps, {n_forcings}), "
                f"was given {self.forcings_out.shape}."
            )
        n_comps = self.forcings_out.shape[0]
        if self.forcing_transfers.shape != (n_forcings, n_comps, n_comps):
            raise ValueError(
                "`forcing_transfers` must have shape "
                f"{(n_forcings, n_comps, n_comps)}, "
                f"was given {self.forcing_transfers.shape}."
            )

    @classmethod
    def from_compartments(
        cls,
        n_comps: int,
        sources: Sequence[Sequence[int]],
        destinations: Sequence[int | None],
        forcing_tcov_inds: Sequence[int],
        forcing_inds: Sequence[bool],
    ) -> "ForcingSchedule":
        """
        Build a schedule from source and destination compartment indices.

        Args:
            n_comps: The number of compartments.
            sources: For each forcing, the indices of the compartments mass is
                drawn from.
            destinations: For each forcing, the index of the compartment the mass is
                moved into, or `None` if the mass leaves the system.
            forcing_tcov_inds: For each forcing, the trajectory column holding its
                magnitude.
            forcing_inds: Boolean flags over the grid times marking where forcings
                occur.

        Returns:
            A forcing schedule with unit weights on the source compartments.
        """
        if not len(sources) == len(destinations) == len(forcing_tcov_inds):
            raise ValueError(
                "`sources`, `destinations`, and `forcing_tcov_inds` must all have "
                "one entry per forcing."
            )
        n_forcings = len(sources)
        forcings_out = np.zeros((n_comps, n_forcings))
        forcing_transfers = np.zeros((n_forcings, n_comps, n_comps))
        for k, (source, destination) in enumerate(zip(sources, destinations)):
            for comp in source:
                forcings_out[comp, k] = 1.0
                forcing_transfers[k, comp, comp] -= 1.0
                if destination is not None:
                    forcing_transfers[k, destination, comp] += 1.0
        return cls(
            forcing_inds=forcing_inds,
            forcing_tcov_inds=forcing_tcov_inds,
            forcings_out=forcings_out,
            forcing_transfers=forcing_transfers,
        )

    @property
    def n_forcings(self) -> int:
        return self.forcing_tcov_inds.shape[0]

    @property
    def n_comps(self) -> int:
        return self.forcings_out.shape[0]

    def apply(
        self,
        volumes: npt.NDArray[np.float64],
        lna_pars_row: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        """
        Apply every forcing to `volumes` in place.

        Args:
            volumes: Compartment volumes, modified in place.
            lna_pars_row: The row of the parameter trajectory at the current time,
                used to look up the forcing magnitudes.

        Returns:
            The `volumes` array.
        """
        magnitudes = np.ascontiguousarray(lna_pars_row[self.forcing_tcov_inds], dtype=np.float64)
        logger.debug("Applying %u forcings with magnitudes %s", self.n_forcings, magnitudes)
        return apply_forcings(
            volumes, magnitudes, self.forcings_out, self.forcing_transfers
        )
