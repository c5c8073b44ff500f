"""
Diagnostic utilities for the kinetic push.

- Particle tracer (per-bounce position/velocity history of selected ids)
- Particle snapshots as arrays
- Kinetic energy and mean velocity of a species on a mesh
- Block balance summary
- CSV export of traces
"""

import csv
import logging
import threading
from typing import Dict, List, Optional, Tuple

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)


class ParticleTracer:
    """
    Records (iteration, position, velocity) of traced particles.

    Pass an instance as the tracer of a KineticMaterial; particles whose id
    is listed in PushConfig.trace_ids report after every bounce. Safe to
    call from several worker threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.samples: Dict[int, List[Tuple[int, np.ndarray, np.ndarray]]] = {}

    def __call__(self, part, iteration):
        with self._lock:
            self.samples.setdefault(part.id, []).append(
                (iteration, part.pos.copy(), part.vel.copy())
            )

    def positions(self, part_id) -> np.ndarray:
        """Recorded positions of one particle, shape (n_samples, 3)."""
        with self._lock:
            history = self.samples.get(part_id, [])
            if not history:
                return np.zeros((0, 3))
            return np.array([pos for _, pos, _ in history])

    def clear(self):
        with self._lock:
            self.samples.clear()

    def write_csv(self, filename):
        """Export all samples as id, iteration, x, y, z, vx, vy, vz rows."""
        with self._lock:
            rows = [
                [part_id, it, *pos.tolist(), *vel.tolist()]
                for part_id, history in sorted(self.samples.items())
                for it, pos, vel in history
            ]

        with open(filename, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["id", "iteration", "x", "y", "z", "vx", "vy", "vz"])
            writer.writerows(rows)

        logger.info("Wrote %d trace samples to %s", len(rows), filename)


def snapshot(material, mesh) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """
    Copy the live particles of one mesh into arrays.

    Returns:
        (pos, vel, spwt) with shapes (n, 3), (n, 3), (n,), or None for an
        unknown mesh
    """
    store = material.get_mesh_data(mesh)
    if store is None:
        return None

    n = store.count()
    pos = np.zeros((n, 3))
    vel = np.zeros((n, 3))
    spwt = np.zeros(n)
    for k, part in enumerate(store.iter_particles()):
        pos[k] = part.pos
        vel[k] = part.vel
        spwt[k] = part.spwt
    return pos, vel, spwt


@njit
def compute_kinetic_energy(vel, spwt, mass):
    """
    Total kinetic energy of weighted particles.

    Args:
        vel: Velocities (n, 3) [m/s]
        spwt: Specific weights (n,)
        mass: Particle mass [kg]

    Returns:
        KE: 0.5 * m * sum(w * |v|^2) [J]
    """
    total = 0.0
    for k in range(vel.shape[0]):
        total += spwt[k] * (vel[k, 0]**2 + vel[k, 1]**2 + vel[k, 2]**2)
    return 0.5 * mass * total


@njit
def compute_mean_velocity(vel, spwt):
    """Weight-averaged velocity (3,); zero for an empty set."""
    mean = np.zeros(3)
    w_sum = 0.0
    for k in range(vel.shape[0]):
        mean += spwt[k] * vel[k]
        w_sum += spwt[k]
    if w_sum > 0.0:
        mean /= w_sum
    return mean


def kinetic_energy(material, mesh) -> float:
    """Kinetic energy [J] of a material's live particles on one mesh."""
    data = snapshot(material, mesh)
    if data is None or data[0].shape[0] == 0:
        return 0.0
    _, vel, spwt = data
    return float(compute_kinetic_energy(vel, spwt, material.mass))


def block_balance(material) -> Dict[str, List[int]]:
    """Live block sizes per mesh, keyed by mesh name."""
    return {
        getattr(mesh, "name", repr(mesh)): material.get_mesh_data(mesh).block_sizes()
        for mesh in material.meshes
    }


def print_step_summary(material, iteration):
    """Log a one-line summary of the last step."""
    stats = material.last_stats
    logger.info(
        "it=%d %s: particles=%d inbox=%d deposited=%d absorbed=%d escaped=%d transferred=%d",
        iteration,
        material.species.name,
        material.particle_count(),
        material.inbox_count(),
        stats.deposited,
        stats.absorbed,
        stats.escaped,
        stats.transferred,
    )
