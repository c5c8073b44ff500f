"""
Kinetic Particle Push

Moves macro-particles through their time step on one or more structured
2D meshes, resolving surface impacts, mesh-edge exits and hand-offs
between meshes, and deposits density and mean velocity.

Components:
- integrator: Euler / Boris velocity update
- boundary: bounce loop, surface hits, edge exits, transfer hand-off
- deposition: per-worker moment buffers and reduction
- kinetic: KineticMaterial, the two-pass step over all meshes
"""

from .integrator import euler_update, boris_update, update_velocity, sample_fields
from .boundary import (
    BoundaryResolver,
    PushState,
    PushStats,
    StepContext,
    clamp_logical,
    exit_face_fraction,
)
from .deposition import MeshMoments, DepositBuffer
from .kinetic import KineticMaterial

__all__ = [
    # Integrator
    "euler_update",
    "boris_update",
    "update_velocity",
    "sample_fields",
    # Boundary
    "BoundaryResolver",
    "PushState",
    "PushStats",
    "StepContext",
    "clamp_logical",
    "exit_face_fraction",
    # Deposition
    "MeshMoments",
    "DepositBuffer",
    # Material
    "KineticMaterial",
]
