"""Geodesic distances and nearest-source clustering on triangle meshes."""

from .mesh import HalfEdgeMesh
from .results import DistanceField
from .update import planar_update, planar_update_batch, update_step
from .fast_marching import run_fastmarching
from .ptp import (
    DeviceBackend,
    ThreadBackend,
    ToplesetsPropagation,
    run_ptp_cpu,
    run_ptp_gpu,
)
from .heat_flow import heat_method_distances, run_heat_flow, run_heat_flow_gpu
from .solvers import (
    ConjugateGradientSolver,
    DirectSolver,
    SolverError,
    SparseSolver,
)
from .geodesics import (
    ALGORITHMS,
    Geodesics,
    GeodesicsConfig,
    compute_geodesics,
)
from .trace import SweepLogger

__all__ = [
    "HalfEdgeMesh",
    "DistanceField",
    "planar_update",
    "planar_update_batch",
    "update_step",
    "run_fastmarching",
    "DeviceBackend",
    "ThreadBackend",
    "ToplesetsPropagation",
    "run_ptp_cpu",
    "run_ptp_gpu",
    "heat_method_distances",
    "run_heat_flow",
    "run_heat_flow_gpu",
    "ConjugateGradientSolver",
    "DirectSolver",
    "SolverError",
    "SparseSolver",
    "ALGORITHMS",
    "Geodesics",
    "GeodesicsConfig",
    "compute_geodesics",
    "SweepLogger",
]
