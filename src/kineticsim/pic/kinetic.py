"""
Kinetic Material: Two-Pass Particle Push Across Multiple Meshes

A KineticMaterial owns every macro-particle of one species. Each step
(update_fields) runs:

    Pass 1  every live block of every mesh: velocity update, boundary
            resolution, moment deposition. Particles crossing a MESH face
            are queued in the neighbor's transfer inbox.
    -- barrier --
    Pass 2  every inbox block of every mesh: velocity kick for the
            remaining time, boundary resolution, deposition, then the
            survivors are spliced into the live blocks.
    Finish  momentum -> mean velocity, density -> per volume.

Inboxes are detached from all meshes before Pass 2 starts, so a particle
handed off a second time during Pass 2 waits in the destination inbox for
the next step. It then gets one extra step of time budget and is resolved
in that step's Pass 2.

Blocks are processed by a thread pool (PushConfig.max_workers); each task
deposits into a private buffer that is reduced after the pass barrier.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from ..fields import Field2D
from ..particles import MeshParticleStore, Particle, ParticleIdCounter
from .boundary import BoundaryResolver, PushState, PushStats, StepContext, clamp_logical
from .deposition import MeshMoments
from .integrator import sample_fields, update_velocity

logger = logging.getLogger(__name__)


class BlockResult:
    """Output of one block task."""

    __slots__ = ("store", "buffer", "stats", "survivors")

    def __init__(self, store, buffer, stats, survivors):
        self.store = store
        self.buffer = buffer
        self.stats = stats
        self.survivors = survivors


class KineticMaterial:
    """
    Particle-based species pushed across one or more meshes.

    Attributes:
        species: KineticSpecies
        config: PushConfig
        tracer: Callable(particle, iteration) for traced particles, or None
        total_momentum: Sum of mass * spwt * |v|^2 over the last step's
                        deposited particles
        last_stats: PushStats of the last step (both passes)
    """

    def __init__(self, species, config, id_counter=None, tracer=None, field_factory=Field2D):
        """
        Args:
            species: KineticSpecies
            config: PushConfig
            id_counter: Shared ParticleIdCounter (new one if None). Share a
                        counter between materials for run-wide unique ids.
            tracer: Per-bounce trace hook
            field_factory: Callable(mesh) -> field accumulator
        """
        self.species = species
        self.config = config
        self.tracer = tracer
        self.id_counter = id_counter if id_counter is not None else ParticleIdCounter()
        self.field_factory = field_factory

        self.total_momentum = 0.0
        self.last_stats = PushStats()

        self._stores = {}
        self._moments = {}

        logger.info("Added KINETIC material '%s'", species.name)
        logger.info("> charge = %g (C)", species.charge)
        logger.info("> mass   = %.4g (kg)", species.mass)
        logger.info("> spwt   = %g", species.spwt0)

    @property
    def q_over_m(self):
        return self.species.q_over_m

    @property
    def mass(self):
        return self.species.mass

    # ==================== MESH REGISTRATION ====================

    def add_mesh(self, mesh, Efi=None, Efj=None, Bfi=None, Bfj=None):
        """
        Register a mesh and its field samples.

        Missing field components default to zero fields.

        Returns:
            store: The MeshParticleStore for this mesh
        """
        fields = [f if f is not None else self.field_factory(mesh) for f in (Efi, Efj, Bfi, Bfj)]
        store = MeshParticleStore(mesh, self.config.num_blocks, *fields)

        self._stores[mesh] = store
        self._moments[mesh] = MeshMoments(
            self.field_factory(mesh), self.field_factory(mesh), self.field_factory(mesh)
        )
        return store

    @property
    def meshes(self):
        return list(self._stores)

    def get_mesh_data(self, mesh):
        """Store for mesh, or None (with a warning) for an unknown mesh."""
        store = self._stores.get(mesh)
        if store is None:
            logger.warning("Failed to find mesh data for the specified mesh %r", mesh)
        return store

    def get_moments(self, mesh):
        """Density/velocity fields for mesh, or None (with a warning)."""
        moments = self._moments.get(mesh)
        if moments is None:
            logger.warning("Failed to find moments for the specified mesh %r", mesh)
        return moments

    def find_mesh(self, pos):
        """First registered mesh containing pos, or None."""
        for mesh in self._stores:
            if mesh.contains(pos):
                return mesh
        return None

    # ==================== PARTICLE INSERTION ====================

    def add_particle(self, position, velocity, spwt=None, iteration=0):
        """
        Insert a new particle.

        Args:
            position: (x, y[, ...]) [m]; only the in-plane components are kept
            velocity: (vx, vy, vz) [m/s]
            spwt: Specific weight (species default if None)
            iteration: Birth iteration

        Returns:
            accepted: False if no mesh contains the position
        """
        mesh = self.find_mesh(position)
        if mesh is None:
            return False

        pos = np.array([position[0], position[1], 0.0], dtype=np.float64)
        weight = self.species.spwt0 if spwt is None else spwt
        part = Particle(pos, velocity, weight, self.species.mass, born_it=iteration)

        return self.insert_particle(self._stores[mesh], part)

    def add_particles(self, positions, velocities, spwt=None, iteration=0):
        """
        Insert several particles.

        Returns:
            n_accepted: Number of particles that landed inside a mesh
        """
        positions = np.atleast_2d(positions)
        velocities = np.atleast_2d(velocities)
        n_accepted = 0
        for k in range(positions.shape[0]):
            if self.add_particle(positions[k], velocities[k], spwt=spwt, iteration=iteration):
                n_accepted += 1
        return n_accepted

    def insert_particle(self, store, part):
        """
        Finish a new particle and add it to a store.

        Computes the logical coordinate if needed, rewinds the velocity by
        half a step (leap-frog start), assigns the id and trace flag.
        """
        mesh = store.mesh
        if part.lc is None:
            # Sources may emit on the plus edges
            part.lc = clamp_logical(mesh.to_logical(part.pos), mesh)

        E, B = sample_fields(store, part.lc)
        update_velocity(part.vel, E, B, self.q_over_m, -0.5 * self.config.dt)

        part.dt = 0.0
        part.id = self.id_counter.next_id()
        part.trace = part.id in self.config.trace_ids

        store.add_particle(part)
        return True

    # ==================== PARTICLE PUSH ====================

    def update_fields(self, iteration=0):
        """
        Advance all particles by one step and recompute the moment fields.

        Args:
            iteration: Current iteration index (for tracing)

        Returns:
            stats: PushStats over both passes
        """
        ctx = StepContext.from_config(self.config, iteration=iteration, tracer=self.tracer)

        for moments in self._moments.values():
            moments.clear()
        self.total_momentum = 0.0

        # Particles deferred from the previous step's second pass
        for store in self._stores.values():
            for block in store.transfer_blocks:
                for part in block.particles:
                    part.dt += ctx.dt

        stats = PushStats()

        tasks = [(store, block, False)
                 for store in self._stores.values()
                 for block in store.particle_blocks]
        stats.merge(self._run_pass(tasks, ctx))

        inboxes = [(store, store.detach_inbox()) for store in self._stores.values()]
        tasks = [(store, block, True)
                 for store, blocks in inboxes
                 for block in blocks]
        stats.merge(self._run_pass(tasks, ctx))

        for moments in self._moments.values():
            moments.finalize()
        self.total_momentum *= self.mass

        self.last_stats = stats
        logger.debug("Step %d '%s': %s", iteration, self.species.name, stats)
        return stats

    def _run_pass(self, tasks, ctx):
        """Run block tasks to completion, then reduce their results."""
        if self.config.max_workers == 1 or len(tasks) <= 1:
            results = [self._move_block(store, block, transfer, ctx)
                       for store, block, transfer in tasks]
        else:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                results = list(executor.map(lambda task: self._move_block(*task, ctx), tasks))

        stats = PushStats()
        for result in results:
            moments = self._moments[result.store.mesh]
            self.total_momentum += moments.reduce([result.buffer])
            result.stats.deposited += result.buffer.n_deposited
            for part in result.survivors:
                result.store.add_particle(part)
            stats.merge(result.stats)
        return stats

    def _move_block(self, store, block, transfer, ctx):
        """
        Push every particle of one block.

        Live blocks lose their absorbed, escaped and transferred particles.
        For inbox blocks the surviving particles are returned for splicing
        into the live set after the pass.
        """
        mesh = store.mesh
        buffer = self._moments[mesh].new_buffer()
        resolver = BoundaryResolver(self.species.index, ctx, self.get_mesh_data, PushStats())
        survivors = []

        iterator = block.iterator()
        for part in iterator:
            if not transfer:
                part.dt += ctx.dt

            E, B = sample_fields(store, part.logical(mesh))
            update_velocity(part.vel, E, B, self.q_over_m, part.dt)

            state = resolver.move(part, mesh)
            if state is not PushState.SETTLED:
                iterator.remove()
                continue

            buffer.deposit(part)
            if transfer:
                survivors.append(part)
                iterator.remove()

        return BlockResult(store, buffer, resolver.stats, survivors)

    # ==================== QUERIES ====================

    def particle_count(self, mesh=None):
        """Live particles on mesh, or on all meshes if mesh is None."""
        if mesh is None:
            return sum(store.count() for store in self._stores.values())
        store = self.get_mesh_data(mesh)
        return store.count() if store is not None else 0

    def inbox_count(self):
        """Particles waiting in transfer inboxes (deferred hand-offs)."""
        return sum(store.inbox_count() for store in self._stores.values())

    def iter_particles(self, mesh):
        """Iterator over all live particles of mesh (empty for unknown mesh)."""
        store = self.get_mesh_data(mesh)
        if store is None:
            return iter(())
        return store.iter_particles()

    def iter_block(self, mesh, block):
        """Iterator over one live block of mesh (empty for unknown mesh)."""
        store = self.get_mesh_data(mesh)
        if store is None:
            return iter(())
        return store.iter_block(block)

    def get_particle(self, part_id):
        """Live particle with the given id on any mesh, or None."""
        for store in self._stores.values():
            part = store.find(part_id)
            if part is not None:
                return part
        return None

    def __repr__(self):
        return (f"KineticMaterial(species={self.species.name!r}, meshes={len(self._stores)}, "
                f"particles={self.particle_count()})")
