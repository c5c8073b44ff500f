"""
Boundary Resolver: Sub-stepping Particles Through Surfaces and Mesh Edges

Each particle is advanced through its remaining time budget in a series of
bounces. A bounce moves the particle along a straight line, then checks,
in order:

    1. Surface hits: the first boundary segment crossed by the travel
       segment (smallest travel parameter). The particle is clipped to the
       hit point, the surface material decides whether it survives, and
       the boundary receives the momentum (and mass, if absorbed) flux.
    2. Mesh exit: if no surface was hit but the particle left the valid
       logical range, it is clipped to the first face it crossed and the
       exit is resolved by the node type on that face (OPEN, SYMMETRY,
       PERIODIC, MESH).
    3. Otherwise the particle has settled for this step.

A bounce cap guards against corners that would otherwise trap a particle
in an endless series of zero-length bounces; hitting the cap drops the
remaining time for the step.

Surface hit tie-break: smallest travel parameter, then owning boundary
name and segment id, then surface parameter.
"""

import math
from enum import Enum

from ..constants import FLT_EPS, PLUS_EDGE_OFFSET, UNREACHED_FACE
from ..mesh import DomainType, Face, NodeType
from ..surfaces import BoundaryType, mirror_velocity


class PushState(Enum):
    """Outcome of resolving one particle for one pass."""

    SETTLED = "settled"
    ABSORBED = "absorbed"
    ESCAPED = "escaped"
    TRANSFERRED = "transferred"


class StepContext:
    """
    Per-step parameters passed explicitly into the push.

    Attributes:
        dt: Step size [s]
        iteration: Current iteration index
        domain_type: DomainType of the simulation
        max_bounces: Bounce cap per particle per pass
        tracer: Callable(particle, iteration) invoked after each bounce of
                traced particles, or None. Must be thread-safe when
                workers > 1.
    """

    __slots__ = ("dt", "iteration", "domain_type", "max_bounces", "tracer")

    def __init__(self, dt, iteration=0, domain_type=DomainType.XY, max_bounces=10, tracer=None):
        self.dt = dt
        self.iteration = iteration
        self.domain_type = DomainType(domain_type)
        self.max_bounces = max_bounces
        self.tracer = tracer

    @classmethod
    def from_config(cls, config, iteration=0, tracer=None):
        return cls(config.dt, iteration=iteration, domain_type=config.domain_type,
                   max_bounces=config.max_bounces, tracer=tracer)


class PushStats:
    """Event counters for one pass (mergeable across workers)."""

    FIELDS = ("moved", "settled", "surface_hits", "absorbed", "escaped",
              "reflected", "wrapped", "transferred", "truncated", "deposited")

    def __init__(self):
        for name in self.FIELDS:
            setattr(self, name, 0)

    def merge(self, other):
        for name in self.FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self

    def as_dict(self):
        return {name: getattr(self, name) for name in self.FIELDS}

    def __repr__(self):
        items = ", ".join(f"{k}={v}" for k, v in self.as_dict().items())
        return f"PushStats({items})"


# ==================== AXISYMMETRIC POSITION UPDATE ====================


def rotate_to_rz(part, dk):
    """
    RZ domain (r in pos[0]): fold the out-of-plane displacement dk back into
    the r-z plane and rotate (v_r, v_theta) by the same angle.
    """
    B = part.pos[0]
    r = math.sqrt(B * B + dk * dk)
    if r == 0.0:
        return

    cos = B / r
    sin = dk / r
    part.pos[0] = r
    part.pos[2] += math.asin(sin)

    u = part.vel[0]
    v = part.vel[2]
    part.vel[0] = cos * u + sin * v
    part.vel[2] = -sin * u + cos * v


def rotate_to_zr(part, dk):
    """
    ZR domain (r in pos[1]): same as rotate_to_rz with the radial axis in
    pos[1]; the rotation is positive in the negative out-of-plane direction.
    """
    B = part.pos[1]
    r = math.sqrt(B * B + dk * dk)
    if r == 0.0:
        return

    cos = B / r
    sin = -dk / r
    part.pos[1] = r
    part.pos[2] += math.asin(sin)

    v1 = part.vel[1]
    v2 = part.vel[2]
    part.vel[1] = cos * v1 - sin * v2
    part.vel[2] = sin * v1 + cos * v2


def advance_position(part, domain_type):
    """Move the particle by vel * dt for its whole remaining budget."""
    dt = part.dt
    part.pos[0] += part.vel[0] * dt
    part.pos[1] += part.vel[1] * dt
    dk = part.vel[2] * dt

    if domain_type == DomainType.RZ:
        rotate_to_rz(part, dk)
    elif domain_type == DomainType.ZR:
        rotate_to_zr(part, dk)
    else:
        part.pos[2] += dk


# ==================== LOGICAL RANGE HELPERS ====================


def clamp_logical(lc, mesh):
    """Clamp a logical coordinate into 0 <= lc_k <= n_k - PLUS_EDGE_OFFSET."""
    lc[0] = min(max(lc[0], 0.0), mesh.ni - PLUS_EDGE_OFFSET)
    lc[1] = min(max(lc[1], 0.0), mesh.nj - PLUS_EDGE_OFFSET)
    return lc


def outside_logical_range(lc, mesh):
    return lc[0] < 0 or lc[1] < 0 or lc[0] >= mesh.ni - 1 or lc[1] >= mesh.nj - 1


def _face_fraction(target, l_old, l_new):
    """Fraction of old -> new travel landing on logical coordinate target."""
    d = l_new - l_old
    if d == 0.0:
        # Already on (or beyond) the face when the bounce started
        return 0.0
    return min(max((target - l_old) / d, 0.0), 1.0)


def exit_face_fraction(lc_old, lc, mesh):
    """
    First face crossed on the way from lc_old to lc.

    Returns:
        (face, t): Exit face and travel fraction at which it is reached.
                   Faces are compared in RIGHT, TOP, LEFT, BOTTOM order and
                   unreached faces get UNREACHED_FACE.
    """
    fractions = [UNREACHED_FACE] * 4

    if lc[0] >= mesh.ni - 1:
        fractions[Face.RIGHT] = _face_fraction(mesh.ni - PLUS_EDGE_OFFSET, lc_old[0], lc[0])
    if lc[1] >= mesh.nj - 1:
        fractions[Face.TOP] = _face_fraction(mesh.nj - PLUS_EDGE_OFFSET, lc_old[1], lc[1])
    if lc[0] < 0:
        fractions[Face.LEFT] = _face_fraction(0.0, lc_old[0], lc[0])
    if lc[1] < 0:
        fractions[Face.BOTTOM] = _face_fraction(0.0, lc_old[1], lc[1])

    face = Face.RIGHT
    t = fractions[Face.RIGHT]
    for f in (Face.TOP, Face.LEFT, Face.BOTTOM):
        if fractions[f] < t:
            face = f
            t = fractions[f]

    return face, t


def exit_node(face, lc, mesh):
    """Boundary node on the crossed face used to classify the exit."""
    i = int(lc[0])
    j = int(lc[1])
    if face == Face.RIGHT:
        i = mesh.ni - 1
    elif face == Face.LEFT:
        i = 0
    elif face == Face.TOP:
        j = mesh.nj - 1
    else:
        j = 0
    return i, j


# ==================== RESOLVER ====================


class BoundaryResolver:
    """
    Moves particles of one species through surface hits and mesh edges.

    One resolver is created per worker task; it holds no state shared with
    other workers apart from the stores and boundaries it hands particles
    and fluxes to (both synchronize internally).

    Attributes:
        species_index: Index passed to surface material callbacks
        context: StepContext
        lookup_store: Callable(mesh) -> MeshParticleStore or None
        stats: PushStats for this worker
    """

    def __init__(self, species_index, context, lookup_store, stats=None):
        self.species_index = species_index
        self.context = context
        self.lookup_store = lookup_store
        self.stats = stats if stats is not None else PushStats()

    def move(self, part, mesh):
        """
        Advance a particle through its remaining time budget.

        Args:
            part: Particle with dt > 0 and lc computed on mesh
            mesh: Mesh the particle currently lives on

        Returns:
            PushState; anything other than SETTLED means the caller must
            remove the particle from its block
        """
        ctx = self.context
        self.stats.moved += 1
        bounces = 0

        while part.dt > 0 and bounces < ctx.max_bounces:
            bounces += 1

            old = part.pos[:2].copy()
            old_lc = part.lc.copy()

            advance_position(part, ctx.domain_type)
            part.lc = mesh.to_logical(part.pos)

            state = self.process_boundary(part, mesh, old, old_lc)
            if state is not None:
                return state

            if part.trace and ctx.tracer is not None:
                ctx.tracer(part, ctx.iteration)

        if part.dt > 0:
            self.stats.truncated += 1
            part.dt = 0.0

        self.stats.settled += 1
        return PushState.SETTLED

    # ==================== SURFACE HITS ====================

    def candidate_segments(self, mesh, lc_old, lc):
        """Solid boundary segments on the nodes of the old -> new bounding box."""
        i_min = max(int(min(lc[0], lc_old[0])), 0)
        j_min = max(int(min(lc[1], lc_old[1])), 0)
        i_max = min(int(max(lc[0], lc_old[0])), mesh.ni - 1)
        j_max = min(int(max(lc[1], lc_old[1])), mesh.nj - 1)

        segments = set()
        for i in range(i_min, i_max + 1):
            for j in range(j_min, j_max + 1):
                for seg in mesh.segments_at(i, j):
                    if seg.boundary is not None and seg.boundary.type == BoundaryType.SOLID:
                        segments.add(seg)
        return segments

    def first_surface_hit(self, part, segments, old):
        """
        Earliest valid intersection of old -> part.pos with the segments.

        Hits at the very start of travel are skipped when the particle is
        moving away from that surface (it just bounced off it).

        Returns:
            (segment, t_surface, t_travel) or None
        """
        best = None
        best_key = None
        vel = part.vel

        for seg in segments:
            hit = seg.intersect(old, part.pos)
            if hit is None:
                continue
            t_surface, t_travel = hit

            if t_travel < FLT_EPS:
                n = seg.normal(t_surface)
                if n[0] * vel[0] + n[1] * vel[1] > 0:
                    continue

            key = (t_travel, seg.sort_key(), t_surface)
            if best_key is None or key < best_key:
                best_key = key
                best = (seg, t_surface, t_travel)

        return best

    def process_boundary(self, part, mesh, old, old_lc):
        """
        Resolve surface hits and mesh exits for the bounce just taken.

        Returns:
            None if the particle is alive and may keep moving, otherwise
            the terminal PushState
        """
        dt0 = part.dt
        part.dt = 0.0

        segments = self.candidate_segments(mesh, old_lc, part.lc)
        hit = self.first_surface_hit(part, segments, old) if segments else None

        if hit is not None:
            return self._surface_impact(part, mesh, old, dt0, *hit)

        if not outside_logical_range(part.lc, mesh):
            return None

        face, t = exit_face_fraction(old_lc, part.lc, mesh)

        # Interpolate in logical space; the mapping need not be linear
        part.lc = old_lc + t * (part.lc - old_lc)
        x = mesh.to_physical(part.lc)
        part.pos[0] = x[0]
        part.pos[1] = x[1]
        part.dt = dt0 * (1.0 - t)

        return self.resolve_exit(part, mesh, face)

    def _surface_impact(self, part, mesh, old, dt0, seg, t_surface, t_travel):
        part.dt = dt0 * (1.0 - t_travel)

        part.pos[0] = old[0] + t_travel * (part.pos[0] - old[0])
        part.pos[1] = old[1] + t_travel * (part.pos[1] - old[1])
        part.lc = mesh.to_logical(part.pos)

        boundary = seg.boundary
        material = boundary.material_at(t_surface)

        alive = False
        if material is not None:
            alive = material.perform_surface_interaction(part.vel, self.species_index, seg, t_surface)

        t_global = seg.id + t_surface
        boundary.add_surface_momentum(t_global, part.vel, part.spwt)
        self.stats.surface_hits += 1

        if not alive:
            boundary.add_surface_mass_deposit(t_global, part.spwt)
            self.stats.absorbed += 1
            return PushState.ABSORBED

        return None

    # ==================== MESH EXITS ====================

    def resolve_exit(self, part, mesh, face):
        """Apply the node type on the exit face."""
        i, j = exit_node(face, part.lc, mesh)
        node_type = mesh.classify(i, j)

        if node_type == NodeType.SYMMETRY:
            mirror_velocity(part.vel, mesh.boundary_normal(face, part.pos))
            self.stats.reflected += 1
            return None

        if node_type == NodeType.PERIODIC:
            self._wrap_periodic(part, mesh, face)
            self.stats.wrapped += 1
            return None

        if node_type == NodeType.MESH:
            return self._hand_off(part, mesh, face)

        # OPEN and anything unclassified
        self.stats.escaped += 1
        return PushState.ESCAPED

    def _wrap_periodic(self, part, mesh, face):
        extent = mesh.extent
        if face == Face.LEFT:
            part.pos[0] += extent[0]
        elif face == Face.RIGHT:
            part.pos[0] -= extent[0]
        elif face == Face.BOTTOM:
            part.pos[1] += extent[1]
        else:
            part.pos[1] -= extent[1]
        part.lc = clamp_logical(mesh.to_logical(part.pos), mesh)

    def _hand_off(self, part, mesh, face):
        """Enqueue the particle into the inbox of the neighbor containing it."""
        if face == Face.LEFT or face == Face.RIGHT:
            index = int(part.lc[1])
        else:
            index = int(part.lc[0])

        # Snap onto the shared face so the neighbor's extent contains it
        x = mesh.snap_to_face(face, part.lc)
        part.pos[0] = x[0]
        part.pos[1] = x[1]

        for neighbor in mesh.neighbors_for(face, index):
            if not neighbor.contains(part.pos):
                continue

            store = self.lookup_store(neighbor)
            if store is None:
                break

            part.lc = clamp_logical(neighbor.to_logical(part.pos), neighbor)
            store.add_transfer_particle(part)
            self.stats.transferred += 1
            return PushState.TRANSFERRED

        self.stats.escaped += 1
        return PushState.ESCAPED
