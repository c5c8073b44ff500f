"""
Node Fields with Bilinear Scatter/Gather

Reference implementation of the field accumulator contract used by the
kinetic push: weighted scatter and gather at a logical coordinate plus
whole-field operations (clear, divide, scale by control volume). The
per-worker reduction in moment deposition relies on zeros_like() and
add_field().

Weighting is bilinear (cloud-in-cell) on the four nodes surrounding the
logical coordinate, so the weights always sum to 1.
"""

import numpy as np
from numba import njit


# ==================== BILINEAR KERNELS ====================


@njit
def _cell_and_fraction(l, n):
    """Lower node index and fractional offset, clamped to the last cell."""
    i = int(l)
    if i < 0:
        i = 0
    elif i > n - 2:
        i = n - 2

    d = l - i
    if d < 0.0:
        d = 0.0
    elif d > 1.0:
        d = 1.0

    return i, d


@njit
def scatter_bilinear(data, l0, l1, value):
    """
    Distribute value onto the four nodes surrounding (l0, l1).

    Args:
        data: Node data [ni, nj] (modified in-place)
        l0, l1: Logical coordinate
        value: Quantity to deposit
    """
    ni, nj = data.shape
    i, di = _cell_and_fraction(l0, ni)
    j, dj = _cell_and_fraction(l1, nj)

    data[i, j] += value * (1.0 - di) * (1.0 - dj)
    data[i + 1, j] += value * di * (1.0 - dj)
    data[i + 1, j + 1] += value * di * dj
    data[i, j + 1] += value * (1.0 - di) * dj


@njit
def gather_bilinear(data, l0, l1):
    """Interpolate node data at (l0, l1)."""
    ni, nj = data.shape
    i, di = _cell_and_fraction(l0, ni)
    j, dj = _cell_and_fraction(l1, nj)

    return (data[i, j] * (1.0 - di) * (1.0 - dj) +
            data[i + 1, j] * di * (1.0 - dj) +
            data[i + 1, j + 1] * di * dj +
            data[i, j + 1] * (1.0 - di) * dj)


@njit
def divide_nonzero(data, other):
    """data /= other where other != 0, data = 0 elsewhere."""
    ni, nj = data.shape
    for i in range(ni):
        for j in range(nj):
            if other[i, j] != 0.0:
                data[i, j] /= other[i, j]
            else:
                data[i, j] = 0.0


# ==================== FIELD CLASS ====================


class Field2D:
    """
    Scalar node field on a 2D mesh.

    Attributes:
        mesh: Owning mesh (needs ni, nj and node_volume)
        data: Node values [ni, nj]
    """

    def __init__(self, mesh, data=None):
        self.mesh = mesh
        if data is None:
            self.data = np.zeros((mesh.ni, mesh.nj), dtype=np.float64)
        else:
            self.data = np.array(data, dtype=np.float64)
            if self.data.shape != (mesh.ni, mesh.nj):
                raise ValueError(
                    f"Field shape {self.data.shape} does not match mesh ({mesh.ni}, {mesh.nj})"
                )

    def scatter(self, lc, value):
        """Deposit value at logical coordinate lc."""
        scatter_bilinear(self.data, lc[0], lc[1], value)

    def gather(self, lc):
        """Interpolated value at logical coordinate lc."""
        return gather_bilinear(self.data, lc[0], lc[1])

    def clear(self):
        self.data[:] = 0.0

    def fill(self, value):
        self.data[:] = value

    def divide_by_field(self, other):
        """Node-wise division; nodes where other is zero become zero."""
        divide_nonzero(self.data, other.data)

    def scale_by_volume(self):
        """Convert an extensive node sum into a per-volume density."""
        self.data /= self.mesh.node_volume

    def zeros_like(self):
        """New zeroed field on the same mesh (per-worker accumulation buffer)."""
        return Field2D(self.mesh)

    def add_field(self, other):
        """Node-wise sum (reduction of a worker buffer)."""
        self.data += other.data

    def sum(self):
        return float(np.sum(self.data))

    def is_zero(self):
        """True if every node is exactly zero."""
        return not np.any(self.data)

    def __repr__(self):
        return f"Field2D(shape={self.data.shape}, sum={self.sum():.4g})"
