"""Linear Noise Approximation sample paths for stochastic compartmental models."""

__all__ = (
    "CallbackSolver",
    "FailureKind",
    "ForcingSchedule",
    "InvalidInputError",
    "LNAModel",
    "LNAPath",
    "LNAPathAssembler",
    "LNAPathError",
    "LNAPathResult",
    "LNASolver",
    "ModelConfig",
    "PathFailure",
    "ScipyLNASolver",
    "apply_forcings",
    "diffusion_sqrt",
    "map_draws_to_lna",
    "propose_lna",
)

__version__ = "0.1.0"


from .diffusion import diffusion_sqrt
from .errors import FailureKind, InvalidInputError, LNAPathError, PathFailure
from .forcing import ForcingSchedule, apply_forcings
from .lna import LNAPath, LNAPathAssembler, LNAPathResult, map_draws_to_lna, propose_lna
from .lna_ode import ScipyLNASolver
from .model import LNAModel, ModelConfig
from .solver import CallbackSolver, LNASolver
