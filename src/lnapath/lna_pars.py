"""
Utilities for the LNA parameter trajectory matrix.

The parameter trajectory has one row per grid time and columns laid out as
`[parameters | constants | time-varying covariates]`, with the initial compartment
volumes stored contiguously somewhere in the first two blocks. The helpers here move
data into that matrix (and between vectors) in place, which is how an outer sampler
swaps proposed parameters in and out without reallocating.
"""

__all__ = (
    "LNAParameterLayout",
    "copy_col",
    "copy_elem",
    "copy_mat",
    "copy_rows",
    "copy_vec",
    "pars2lnapars",
)


from collections.abc import Sequence

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, Field, computed_field, model_validator


class LNAParameterLayout(BaseModel):
    """
    Column layout of an LNA parameter trajectory.

    Attributes:
        names: The column names, in order.
        n_params: The number of leading parameter columns.
        n_consts: The number of constant columns following the parameters, including
            the initial volumes.
        n_tcovar: The number of trailing time-varying covariate columns.
        init_start: The column where the initial compartment volumes start.
        n_comps: The number of compartments.

    Examples:
        >>> from lnapath.lna_pars import LNAParameterLayout
        >>> layout = LNAParameterLayout(
        ...     names=["beta", "gamma", "S_0", "I_0", "R_0", "vacc"],
        ...     n_params=2,
        ...     n_consts=3,
        ...     n_tcovar=1,
        ...     init_start=2,
        ...     n_comps=3,
        ... )
        >>> layout.param_inds
        [0, 1]
        >>> layout.initdist_inds
        [2, 3, 4]
        >>> layout.tcovar_inds
        [5]
        >>> layout.index("vacc")
        5
    """

    names: list[str]
    n_params: int = Field(ge=0)
    n_consts: int = Field(ge=0)
    n_tcovar: int = Field(ge=0)
    init_start: int = Field(ge=0)
    n_comps: int = Field(ge=1)

    @model_validator(mode="after")
    def _validate_layout(self) -> "LNAParameterLayout":
        n_cols = self.n_params + self.n_consts + self.n_tcovar
        if len(self.names) != n_cols:
            raise ValueError(
                f"Expected {n_cols} column names, was given {len(self.names)}."
            )
        if len(set(self.names)) != len(self.names):
            raise ValueError("Column names must be unique.")
        if self.init_start + self.n_comps > self.n_params + self.n_consts:
            raise ValueError(
                "The initial volumes must lie within the parameter and constant "
                "columns, but they end at column "
                f"{self.init_start + self.n_comps - 1}."
            )
        return self

    @computed_field
    @property
    def param_inds(self) -> list[int]:
        return list(range(self.n_params))

    @computed_field
    @property
    def const_inds(self) -> list[int]:
        return list(range(self.n_params, self.n_params + self.n_consts))

    @computed_field
    @property
    def tcovar_inds(self) -> list[int]:
        start = self.n_params + self.n_consts
        return list(range(start, start + self.n_tcovar))

    @computed_field
    @property
    def initdist_inds(self) -> list[int]:
        return list(range(self.init_start, self.init_start + self.n_comps))

    def index(self, name: str) -> int:
        """
        Look up the column index of a named column.

        Raises:
            KeyError: If `name` is not a column of this layout.
        """
        try:
            return self.names.index(name)
        except ValueError:
            raise KeyError(f"No column named '{name}' in the LNA parameters.") from None


def pars2lnapars(
    lna_pars: npt.NDArray[np.float64],
    parameters: npt.NDArray[np.float64],
    c_start: int = 0,
) -> None:
    """
    Broadcast a parameter row over every time row of a parameter trajectory.

    Args:
        lna_pars: The (n_times, n_cols) parameter trajectory, modified in place.
        parameters: The parameter values to copy into every row.
        c_start: The first column to write to.

    Examples:
        >>> import numpy as np
        >>> lna_pars = np.zeros((3, 4))
        >>> pars2lnapars(lna_pars, np.array([1.0, 2.0]), c_start=1)
        >>> lna_pars
        array([[0., 1., 2., 0.],
               [0., 1., 2., 0.],
               [0., 1., 2., 0.]])
    """
    lna_pars[:, c_start : c_start + len(parameters)] = parameters


def copy_elem(dest: npt.NDArray, orig: npt.NDArray, ind: int) -> None:
    """Copy element `ind` of `orig` into `dest`."""
    dest[ind] = orig[ind]


def copy_vec(dest: npt.NDArray, orig: npt.NDArray) -> None:
    """Copy the contents of the vector `orig` into `dest`."""
    dest[:] = orig


def copy_mat(dest: npt.NDArray, orig: npt.NDArray) -> None:
    """Copy the contents of the matrix `orig` into `dest`."""
    dest[:, :] = orig


def copy_col(dest: npt.NDArray, orig: npt.NDArray, ind: int) -> None:
    """Copy column `ind` of `orig` into the same column of `dest`."""
    dest[:, ind] = orig[:, ind]


def copy_rows(dest: npt.NDArray, orig: npt.NDArray, inds: Sequence[int]) -> None:
    """
    Copy the rows of `orig` into the rows `inds` of `dest`.

    Examples:
        >>> import numpy as np
        >>> dest = np.zeros((3, 2))
        >>> copy_rows(dest, np.ones((2, 2)), [0, 2])
        >>> dest
        array([[1., 1.],
               [0., 0.],
               [1., 1.]])
    """
    dest[np.asarray(inds)] = orig
