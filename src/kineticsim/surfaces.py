"""
Boundary Segments and Surface Materials

Implements:
    - Straight line segments with segment/segment intersection
    - Boundaries: ordered segment chains with surface flux accumulators
    - Surface materials handed to the particle push:
        * AbsorbingMaterial: every impact sticks
        * SpecularMaterial: mirror reflection about the segment normal
        * CLLMaterial: Cercignani-Lampis-Lord reflection at a wall temperature

Segment normals point into the gas (to the right of the x1 -> x2 direction).
A particle with v . n > 0 is moving away from the surface.

Material contract:
    perform_surface_interaction(vel, species_index, segment, t_surface) -> bool
    vel is a float64[3] array mutated in place; the return value is True if
    the particle survives the impact.

References:
    Lord (1991), "Some Extensions to the Cercignani-Lampis Gas-Surface Scattering Kernel"
    Bird (1994), "Molecular Gas Dynamics", Ch. 11
"""

import logging
import math
import threading
from enum import IntEnum

import numpy as np
from numba import njit

from .constants import kB

logger = logging.getLogger(__name__)


class BoundaryType(IntEnum):
    """SOLID boundaries interact with particles, VIRTUAL ones are skipped."""

    SOLID = 0
    VIRTUAL = 1


# ==================== SEGMENTS ====================


class LineSegment:
    """
    Straight boundary segment from x1 to x2.

    Attributes:
        x1, x2: End points [m], shape (2,)
        id: Index of the segment within its boundary
        boundary: Owning Boundary (None for standalone segments)
    """

    def __init__(self, x1, x2, id=0, boundary=None):
        self.x1 = np.asarray(x1, dtype=np.float64)[:2].copy()
        self.x2 = np.asarray(x2, dtype=np.float64)[:2].copy()
        self.id = id
        self.boundary = boundary

        tangent = self.x2 - self.x1
        self.length = float(np.hypot(tangent[0], tangent[1]))
        if self.length == 0.0:
            raise ValueError(f"Degenerate segment at {self.x1.tolist()}")

        self._normal = np.array([tangent[1] / self.length, -tangent[0] / self.length, 0.0])

    def intersect(self, old, new):
        """
        Intersect the travel segment old -> new with this segment.

        Args:
            old: Start of travel (x, y[, ...])
            new: End of travel (x, y[, ...])

        Returns:
            (t_surface, t_travel) with both in [0, 1], or None if the
            segments do not cross or are parallel
        """
        return _intersect_segments(
            self.x1[0], self.x1[1], self.x2[0], self.x2[1],
            old[0], old[1], new[0], new[1],
        )

    def normal(self, t_surface=0.0):
        """Unit normal pointing into the gas, shape (3,)."""
        return self._normal

    def position(self, t_surface):
        """Physical position at surface parameter t."""
        return self.x1 + t_surface * (self.x2 - self.x1)

    def sort_key(self):
        """Deterministic ordering key: owning boundary name, then segment id."""
        name = self.boundary.name if self.boundary is not None else ""
        return (name, self.id)

    def __repr__(self):
        return f"LineSegment(id={self.id}, x1={self.x1.tolist()}, x2={self.x2.tolist()})"


def _intersect_segments(ax, ay, bx, by, px, py, qx, qy):
    """Parametric intersection of A->B (surface) and P->Q (travel)."""
    rx = bx - ax
    ry = by - ay
    sx = qx - px
    sy = qy - py

    denom = rx * sy - ry * sx
    if denom == 0.0:
        return None

    dx = px - ax
    dy = py - ay

    t_surface = (dx * sy - dy * sx) / denom
    t_travel = (dx * ry - dy * rx) / denom

    if t_surface < 0.0 or t_surface > 1.0 or t_travel < 0.0 or t_travel > 1.0:
        return None

    return t_surface, t_travel


# ==================== BOUNDARIES ====================


class Boundary:
    """
    Named chain of segments sharing one surface material.

    Surface parameters passed to the accumulators are global:
    t = segment.id + t_surface.

    Attributes:
        name: Boundary name
        type: BoundaryType
        material: Surface material (None: particles are absorbed)
        segments: List of LineSegment
        surface_momentum: Deposited weight * velocity per segment [n_seg, 3]
        surface_mass: Deposited (absorbed) weight per segment [n_seg]
        impacts: Number of impacts per segment [n_seg]
    """

    def __init__(self, name, points, type=BoundaryType.SOLID, material=None):
        """
        Build a boundary from a polyline.

        Args:
            name: Boundary name
            points: Polyline vertices [(x, y), ...], at least two
            type: BoundaryType
            material: Surface material for every segment
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[0] < 2:
            raise ValueError(f"Boundary '{name}' needs at least two points")

        self.name = name
        self.type = BoundaryType(type)
        self.material = material
        self.segments = [
            LineSegment(points[k], points[k + 1], id=k, boundary=self)
            for k in range(points.shape[0] - 1)
        ]

        n_seg = len(self.segments)
        self.surface_momentum = np.zeros((n_seg, 3), dtype=np.float64)
        self.surface_mass = np.zeros(n_seg, dtype=np.float64)
        self.impacts = np.zeros(n_seg, dtype=np.int64)
        self._lock = threading.Lock()

    def material_at(self, t_surface):
        """Material at surface parameter t (uniform along the boundary)."""
        return self.material

    def _segment_index(self, t):
        return min(max(int(t), 0), len(self.segments) - 1)

    def add_surface_momentum(self, t, vel, spwt):
        """Accumulate spwt * vel at global surface parameter t."""
        k = self._segment_index(t)
        with self._lock:
            self.surface_momentum[k, 0] += spwt * vel[0]
            self.surface_momentum[k, 1] += spwt * vel[1]
            self.surface_momentum[k, 2] += spwt * vel[2]
            self.impacts[k] += 1

    def add_surface_mass_deposit(self, t, spwt):
        """Accumulate absorbed weight at global surface parameter t."""
        k = self._segment_index(t)
        with self._lock:
            self.surface_mass[k] += spwt

    def clear_surface_data(self):
        with self._lock:
            self.surface_momentum[:] = 0.0
            self.surface_mass[:] = 0.0
            self.impacts[:] = 0

    def __repr__(self):
        return (f"Boundary(name={self.name!r}, type={self.type.name}, "
                f"segments={len(self.segments)})")


# ==================== SURFACE MATERIALS ====================


class AbsorbingMaterial:
    """Every particle hitting the surface sticks."""

    name = "absorbing"

    def perform_surface_interaction(self, vel, species_index, segment, t_surface):
        return False


class SpecularMaterial:
    """Perfect mirror: reverse the normal velocity component."""

    name = "specular"

    def perform_surface_interaction(self, vel, species_index, segment, t_surface):
        mirror_velocity(vel, segment.normal(t_surface))
        return True


class CLLMaterial:
    """
    Cercignani-Lampis-Lord reflection at a fixed wall temperature.

    Attributes:
        T_wall: Wall temperature [K]
        alpha_n: Normal accommodation coefficient [0, 1]
        alpha_t: Tangential accommodation coefficient [0, 1]
        masses: Particle mass per species index [kg]
    """

    name = "cll"

    def __init__(self, T_wall, masses, alpha_n=1.0, alpha_t=1.0):
        if not (0.0 <= alpha_n <= 1.0 and 0.0 <= alpha_t <= 1.0):
            raise ValueError(f"Accommodation coefficients must be in [0, 1]: {alpha_n}, {alpha_t}")
        self.T_wall = T_wall
        self.alpha_n = alpha_n
        self.alpha_t = alpha_t
        self.masses = dict(masses)

    def perform_surface_interaction(self, vel, species_index, segment, t_surface):
        m = self.masses.get(species_index)
        if m is None:
            logger.warning("CLL material has no mass for species index %d, absorbing", species_index)
            return False

        v_wall = np.zeros(3, dtype=np.float64)
        vel[:] = cll_reflect_particle_general(
            vel, v_wall, m, self.T_wall, self.alpha_n, self.alpha_t, segment.normal(t_surface)
        )
        return True


@njit
def mirror_velocity(vel, normal):
    """Mirror vel about the plane with unit normal n: v -= 2 (v . n) n."""
    v_n = vel[0] * normal[0] + vel[1] * normal[1] + vel[2] * normal[2]
    vel[0] -= 2.0 * v_n * normal[0]
    vel[1] -= 2.0 * v_n * normal[1]
    vel[2] -= 2.0 * v_n * normal[2]


@njit
def cll_reflect_particle_general(v_incident, v_wall, m, T_wall, alpha_n, alpha_t, wall_normal):
    """
    CLL reflection for an arbitrary wall orientation.

    Parameters:
    -----------
    v_incident : ndarray (3,)
        Incident velocity in lab frame [m/s]
    v_wall : ndarray (3,)
        Wall velocity [m/s]
    m : float
        Particle mass [kg]
    T_wall : float
        Wall temperature [K]
    alpha_n, alpha_t : float
        Normal / tangential accommodation (0 = specular, 1 = diffuse)
    wall_normal : ndarray (3,)
        Unit normal pointing into the gas

    Returns:
    --------
    v_reflected : ndarray (3,)
        Reflected velocity in lab frame [m/s]
    """
    v_rel = v_incident - v_wall

    v_n_incident = v_rel[0]*wall_normal[0] + v_rel[1]*wall_normal[1] + v_rel[2]*wall_normal[2]

    if v_n_incident >= 0:
        return v_incident.copy()

    v_t_incident = np.array([
        v_rel[0] - v_n_incident * wall_normal[0],
        v_rel[1] - v_n_incident * wall_normal[1],
        v_rel[2] - v_n_incident * wall_normal[2]
    ], dtype=np.float64)

    v_thermal = math.sqrt(2.0 * kB * T_wall / m)

    # Normal: specular part mixed with a half-Maxwellian leaving the wall
    v_n_spec = -v_n_incident
    u1 = 1.0 - np.random.rand()
    v_n_diff = v_thermal * math.sqrt(-math.log(u1))
    v_n_reflected = math.sqrt(1.0 - alpha_n) * v_n_spec + math.sqrt(alpha_n) * v_n_diff

    # Tangential: 3D Maxwellian sample projected onto the tangent plane
    v_diff_3d = np.empty(3, dtype=np.float64)
    for k in range(3):
        u2 = 1.0 - np.random.rand()
        u3 = np.random.rand()
        v_diff_3d[k] = v_thermal * math.sqrt(-2.0 * math.log(u2)) * math.cos(2.0 * math.pi * u3)

    v_diff_dot_n = v_diff_3d[0]*wall_normal[0] + v_diff_3d[1]*wall_normal[1] + v_diff_3d[2]*wall_normal[2]

    v_reflected = np.empty(3, dtype=np.float64)
    for k in range(3):
        v_t_diff = v_diff_3d[k] - v_diff_dot_n * wall_normal[k]
        v_t_reflected = math.sqrt(1.0 - alpha_t) * v_t_incident[k] + math.sqrt(alpha_t) * v_t_diff
        v_reflected[k] = v_n_reflected * wall_normal[k] + v_t_reflected + v_wall[k]

    return v_reflected
