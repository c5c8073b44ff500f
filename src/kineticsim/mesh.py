"""
Structured 2D Mesh for Kinetic Particle Push

Defines the node/face/domain enumerations shared by the push and a
reference uniform rectangular mesh that implements the mesh contract the
push consumes:

    to_logical(pos) / to_physical(lc)      coordinate mapping
    snap_to_face(face, lc)                 position on a face
    classify(i, j)                         node classification
    neighbors_for(face, index)             inter-mesh topology
    segments_at(i, j)                      boundary segments touching a node
    contains(pos), boundary_normal(face)   geometry queries

Grid layout (ni = 4, nj = 3 example), logical coordinates in node units:

    j=2  o-----o-----o-----o      TOP
         |     |     |     |
    j=1  o-----o-----o-----o      LEFT / RIGHT are i = 0 / i = ni-1
         |     |     |     |
    j=0  o-----o-----o-----o      BOTTOM
        i=0   i=1   i=2   i=3

Valid logical range on axis k is 0 <= lc_k < n_k - 1.
"""

import logging
from enum import Enum, IntEnum

import numpy as np

logger = logging.getLogger(__name__)


class Face(IntEnum):
    """Mesh faces, in the order exit fractions are compared."""

    RIGHT = 0
    TOP = 1
    LEFT = 2
    BOTTOM = 3


class NodeType(IntEnum):
    """Node classification used to resolve mesh-edge crossings."""

    UNKNOWN = 0
    OPEN = 1
    SYMMETRY = 2
    PERIODIC = 3
    MESH = 4
    DIRICHLET = 5


class DomainType(str, Enum):
    """Domain orientation. RZ: (r, z) in (x, y); ZR: (z, r) in (x, y)."""

    XY = "XY"
    RZ = "RZ"
    ZR = "ZR"


class UniformMesh:
    """
    Uniform rectangular mesh with linear physical <-> logical mapping.

    Attributes:
        name: Mesh name (used in log messages)
        ni, nj: Number of nodes along i and j
        x0: Lower-left corner [m], shape (2,)
        xd: Upper-right corner [m], shape (2,)
        dh: Node spacing [m], shape (2,)
        node_type: Node classification, shape (ni, nj)
        node_volume: Control volume per node [m^3] (per unit depth in XY)
    """

    def __init__(self, x0, xd, ni, nj, name="mesh", domain_type=DomainType.XY):
        """
        Initialize uniform mesh.

        Args:
            x0: Lower-left corner (x, y) [m]
            xd: Upper-right corner (x, y) [m]
            ni: Nodes along i (>= 2)
            nj: Nodes along j (>= 2)
            name: Mesh name
            domain_type: Orientation, used for axisymmetric node volumes

        Raises:
            ValueError: If the node counts or extents are degenerate
        """
        if ni < 2 or nj < 2:
            raise ValueError(f"Mesh '{name}' needs at least 2x2 nodes, got {ni}x{nj}")

        self.x0 = np.asarray(x0, dtype=np.float64)[:2].copy()
        self.xd = np.asarray(xd, dtype=np.float64)[:2].copy()

        if np.any(self.xd <= self.x0):
            raise ValueError(f"Mesh '{name}' has non-positive extent: x0={self.x0}, xd={self.xd}")

        self.name = name
        self.ni = ni
        self.nj = nj
        self.domain_type = DomainType(domain_type)
        self.dh = (self.xd - self.x0) / np.array([ni - 1, nj - 1], dtype=np.float64)

        # Boundary nodes default to OPEN, interior nodes are unclassified
        self.node_type = np.full((ni, nj), NodeType.UNKNOWN, dtype=np.int8)
        for face in Face:
            self.set_face_type(face, NodeType.OPEN)

        self._neighbors = {face: [] for face in Face}
        self._segments = {}

        self.node_volume = self._compute_node_volume()

    # ==================== COORDINATE MAPPING ====================

    def to_logical(self, pos):
        """Physical position -> logical coordinate, shape (2,)."""
        return np.array([
            (pos[0] - self.x0[0]) / self.dh[0],
            (pos[1] - self.x0[1]) / self.dh[1],
        ], dtype=np.float64)

    def to_physical(self, lc):
        """Logical coordinate -> physical position, shape (2,)."""
        return np.array([
            self.x0[0] + lc[0] * self.dh[0],
            self.x0[1] + lc[1] * self.dh[1],
        ], dtype=np.float64)

    def snap_to_face(self, face, lc):
        """
        Physical position on a face at the logical coordinate lc.

        The crossed axis uses the stored corner value so that meshes sharing
        the face agree on it exactly.
        """
        x = self.to_physical(lc)
        if face == Face.RIGHT:
            x[0] = self.xd[0]
        elif face == Face.LEFT:
            x[0] = self.x0[0]
        elif face == Face.TOP:
            x[1] = self.xd[1]
        else:
            x[1] = self.x0[1]
        return x

    @property
    def extent(self):
        """Domain size along each axis [m], shape (2,)."""
        return self.xd - self.x0

    def contains(self, pos):
        """True if pos lies inside or on the edge of the mesh."""
        return (self.x0[0] <= pos[0] <= self.xd[0] and
                self.x0[1] <= pos[1] <= self.xd[1])

    # ==================== NODE CLASSIFICATION ====================

    def set_face_type(self, face, node_type):
        """Classify every node on a face."""
        if face == Face.RIGHT:
            self.node_type[self.ni - 1, :] = node_type
        elif face == Face.LEFT:
            self.node_type[0, :] = node_type
        elif face == Face.TOP:
            self.node_type[:, self.nj - 1] = node_type
        else:
            self.node_type[:, 0] = node_type

    def classify(self, i, j):
        """Node type at (i, j); out-of-range nodes are UNKNOWN."""
        if 0 <= i < self.ni and 0 <= j < self.nj:
            return NodeType(self.node_type[i, j])
        return NodeType.UNKNOWN

    def boundary_normal(self, face, pos=None):
        """Outward unit normal of a face, shape (3,)."""
        if face == Face.RIGHT:
            return np.array([1.0, 0.0, 0.0])
        if face == Face.LEFT:
            return np.array([-1.0, 0.0, 0.0])
        if face == Face.TOP:
            return np.array([0.0, 1.0, 0.0])
        return np.array([0.0, -1.0, 0.0])

    # ==================== MULTI-MESH TOPOLOGY ====================

    def connect(self, face, neighbor):
        """
        Register a neighboring mesh across a face and mark the face MESH.

        Args:
            face: Face of this mesh shared with the neighbor
            neighbor: Mesh on the other side
        """
        self._neighbors[face].append(neighbor)
        self.set_face_type(face, NodeType.MESH)
        logger.debug("Mesh '%s' %s face connected to '%s'", self.name, face.name, neighbor.name)

    def neighbors_for(self, face, index):
        """Meshes registered across a face (same list for every index)."""
        return self._neighbors[face]

    # ==================== BOUNDARY SEGMENTS ====================

    def attach_segment(self, segment):
        """
        Register a boundary segment with every node its bounding box touches.

        The box is padded by one node so that any cell the segment passes
        through has the segment listed on its lower-left node.
        """
        lc1 = self.to_logical(segment.x1)
        lc2 = self.to_logical(segment.x2)

        i_min = max(int(np.floor(min(lc1[0], lc2[0]))) - 1, 0)
        j_min = max(int(np.floor(min(lc1[1], lc2[1]))) - 1, 0)
        i_max = min(int(np.ceil(max(lc1[0], lc2[0]))) + 1, self.ni - 1)
        j_max = min(int(np.ceil(max(lc1[1], lc2[1]))) + 1, self.nj - 1)

        for i in range(i_min, i_max + 1):
            for j in range(j_min, j_max + 1):
                self._segments.setdefault((i, j), set()).add(segment)

    def attach_boundary(self, boundary):
        """Register all segments of a boundary."""
        for segment in boundary.segments:
            self.attach_segment(segment)

    def segments_at(self, i, j):
        """Set of segments registered at node (i, j)."""
        return self._segments.get((i, j), frozenset())

    # ==================== CONTROL VOLUMES ====================

    def _compute_node_volume(self):
        """
        Node control volumes: half cells on edges, quarter cells at corners.

        In RZ/ZR domains the area is revolved about the axis (2*pi*r); nodes
        on the axis use r = dr/4.
        """
        wi = np.full(self.ni, self.dh[0])
        wi[0] *= 0.5
        wi[-1] *= 0.5
        wj = np.full(self.nj, self.dh[1])
        wj[0] *= 0.5
        wj[-1] *= 0.5
        volume = np.outer(wi, wj)

        if self.domain_type == DomainType.XY:
            return volume

        if self.domain_type == DomainType.RZ:
            r = self.x0[0] + np.arange(self.ni) * self.dh[0]
            r = np.where(r == 0.0, 0.25 * self.dh[0], r)
            return volume * (2.0 * np.pi * r)[:, None]

        r = self.x0[1] + np.arange(self.nj) * self.dh[1]
        r = np.where(r == 0.0, 0.25 * self.dh[1], r)
        return volume * (2.0 * np.pi * r)[None, :]

    def __repr__(self):
        return (f"UniformMesh(name={self.name!r}, ni={self.ni}, nj={self.nj}, "
                f"x0={self.x0.tolist()}, xd={self.xd.tolist()})")
