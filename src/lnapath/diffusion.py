"""
Matrix square roots of LNA diffusion matrices.

The diffusion matrices produced by the ODE solver are symmetric positive
semi-definite in exact arithmetic, but in floating point they can be slightly
indefinite or nearly singular, so a Cholesky factorization is not reliable. The
square root is instead built from a singular value decomposition with negative
singular values clamped to zero.
"""

__all__ = ("diffusion_sqrt",)


import numpy as np
import numpy.typing as npt
import scipy.linalg


def diffusion_sqrt(
    diffusion: npt.NDArray[np.float64],
    out: npt.NDArray[np.float64] | None = None,
) -> npt.NDArray[np.float64]:
    """
    Compute a matrix square root of a diffusion matrix.

    Args:
        diffusion: A square, symmetric (up to rounding) diffusion matrix.
        out: An optional array of the same shape as `diffusion` to write the result
            into.

    Returns:
        A matrix `S` such that `S @ S.T` approximates `diffusion`. Entries of `S` are
        exactly zero wherever `diffusion` is exactly zero. If `out` is given it is
        returned.

    Raises:
        scipy.linalg.LinAlgError: If the singular value decomposition does not
            converge.

    Examples:
        >>> import numpy as np
        >>> from lnapath.diffusion import diffusion_sqrt
        >>> diffusion_sqrt(np.diag([4.0, 9.0]))
        array([[2., 0.],
               [0., 3.]])
        >>> diffusion_sqrt(np.zeros((2, 2)))
        array([[0., 0.],
               [0., 0.]])
    """
    u, d, vt = scipy.linalg.svd(diffusion, check_finite=False)
    d[d < 0.0] = 0.0
    sqrt_diffusion = (u * np.sqrt(d)) @ vt
    sqrt_diffusion[diffusion == 0.0] = 0.0
    if out is None:
        return sqrt_diffusion
    out[:] = sqrt_diffusion
    return out
