"""
Particle Records and Block-Partitioned Particle Store

Particles of one species on one mesh are split into a fixed number of
blocks (the parallel width). A block is an unordered bag; it is the unit of
parallel work and of safe removal during iteration. Each mesh also owns an
equal number of transfer-inbox blocks that receive particles handed off by
neighboring meshes during a step.
"""

import itertools
import threading

import numpy as np


# ==================== PARTICLE ====================


class Particle:
    """
    Single kinetic macro-particle.

    Attributes:
        pos: Position [m], shape (3,). In RZ/ZR domains pos[2] is the
             azimuthal angle [rad]
        vel: Velocity [m/s], shape (3,)
        spwt: Specific weight (real particles represented, > 0)
        mass: Mass of one physical particle [kg]
        lc: Cached logical coordinate, shape (2,), or None until computed
        dt: Remaining time budget for the current step [s]
        id: Unique particle id (-1 until inserted)
        born_it: Iteration the particle was inserted at
        trace: True if the particle's bounces are reported to the tracer
    """

    __slots__ = ("pos", "vel", "spwt", "mass", "lc", "dt", "id", "born_it", "trace")

    def __init__(self, pos, vel, spwt, mass, born_it=0):
        if not spwt > 0:
            raise ValueError(f"Particle weight must be positive, got {spwt}")

        self.pos = np.zeros(3, dtype=np.float64)
        pos = np.asarray(pos, dtype=np.float64)
        self.pos[:pos.shape[0]] = pos[:3]
        self.vel = np.array(vel, dtype=np.float64).reshape(3)
        self.spwt = float(spwt)
        self.mass = float(mass)
        self.lc = None
        self.dt = 0.0
        self.id = -1
        self.born_it = born_it
        self.trace = False

    def logical(self, mesh):
        """Logical coordinate on mesh, computed on first use and cached."""
        if self.lc is None:
            self.lc = mesh.to_logical(self.pos)
        return self.lc

    def copy(self):
        """Independent copy with the same id."""
        part = Particle.__new__(Particle)
        part.pos = self.pos.copy()
        part.vel = self.vel.copy()
        part.spwt = self.spwt
        part.mass = self.mass
        part.lc = None if self.lc is None else self.lc.copy()
        part.dt = self.dt
        part.id = self.id
        part.born_it = self.born_it
        part.trace = self.trace
        return part

    def speed2(self):
        """Squared speed [m^2/s^2]."""
        return float(self.vel[0]**2 + self.vel[1]**2 + self.vel[2]**2)

    def __repr__(self):
        return (f"Particle(id={self.id}, pos={self.pos.tolist()}, "
                f"vel={self.vel.tolist()}, spwt={self.spwt:.4g}, dt={self.dt:.3e})")


class ParticleIdCounter:
    """Thread-safe, monotonically increasing particle id source."""

    def __init__(self, start=0):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self):
        with self._lock:
            return next(self._counter)


# ==================== BLOCKS AND ITERATORS ====================


class ParticleBlock:
    """Unordered bag of particles."""

    __slots__ = ("particles",)

    def __init__(self):
        self.particles = []

    def add(self, part):
        self.particles.append(part)

    def clear(self):
        self.particles.clear()

    def __len__(self):
        return len(self.particles)

    def iterator(self):
        return BlockIterator(self)


class BlockIterator:
    """
    Forward-only, single-pass iterator over one block.

    remove() deletes the particle most recently returned by next(). The
    last particle of the block is swapped into the freed slot and that slot
    is visited next, so every particle is still seen exactly once.
    """

    def __init__(self, block):
        self._items = block.particles
        self._index = 0
        self._current = -1

    def __iter__(self):
        return self

    def __next__(self):
        if self._index >= len(self._items):
            self._current = -1
            raise StopIteration
        self._current = self._index
        self._index += 1
        return self._items[self._current]

    def has_next(self):
        return self._index < len(self._items)

    def remove(self):
        """Remove the particle last returned by next()."""
        if self._current < 0:
            raise RuntimeError("remove() called without a preceding next()")

        last = self._items.pop()
        if self._current < len(self._items):
            self._items[self._current] = last
            # Revisit the slot that now holds the swapped-in particle
            self._index = self._current
        self._current = -1


class ChainedBlockIterator:
    """
    Iterates over several blocks in block order as one sequence.

    Supports remove() on the particle last returned, delegated to the
    iterator of the block it came from.
    """

    def __init__(self, blocks):
        self._blocks = list(blocks)
        self._b = 0
        self._iterator = self._blocks[0].iterator() if self._blocks else None

    def __iter__(self):
        return self

    def __next__(self):
        while self._iterator is not None:
            if self._iterator.has_next():
                return next(self._iterator)
            self._b += 1
            if self._b < len(self._blocks):
                self._iterator = self._blocks[self._b].iterator()
            else:
                self._iterator = None
        raise StopIteration

    def remove(self):
        if self._iterator is None:
            raise RuntimeError("remove() called on an exhausted iterator")
        self._iterator.remove()


# ==================== PER-MESH STORE ====================


class MeshParticleStore:
    """
    Particles of one species on one mesh.

    Attributes:
        mesh: The mesh
        num_blocks: Parallel width
        particle_blocks: Live particle blocks
        transfer_blocks: Transfer inbox blocks
        Efi, Efj: Electric field components (node fields)
        Bfi, Bfj: Magnetic field components (node fields)
    """

    def __init__(self, mesh, num_blocks, Efi, Efj, Bfi, Bfj):
        if num_blocks < 1:
            raise ValueError(f"num_blocks must be >= 1, got {num_blocks}")

        self.mesh = mesh
        self.num_blocks = num_blocks
        self.Efi = Efi
        self.Efj = Efj
        self.Bfi = Bfi
        self.Bfj = Bfj

        self.particle_blocks = [ParticleBlock() for _ in range(num_blocks)]
        self.transfer_blocks = [ParticleBlock() for _ in range(num_blocks)]
        self._lock = threading.Lock()

    @staticmethod
    def _smallest(blocks):
        """Index of the block with the fewest particles (lowest index on ties)."""
        block = 0
        min_count = len(blocks[0])
        for b in range(1, len(blocks)):
            if len(blocks[b]) < min_count:
                min_count = len(blocks[b])
                block = b
        return block

    def add_particle(self, part):
        """Append to the live block with the fewest particles."""
        with self._lock:
            self.particle_blocks[self._smallest(self.particle_blocks)].add(part)

    def add_transfer_particle(self, part):
        """Append to the inbox block with the fewest particles."""
        with self._lock:
            self.transfer_blocks[self._smallest(self.transfer_blocks)].add(part)

    def detach_inbox(self):
        """
        Swap in empty inbox blocks and return the previous ones.

        Particles handed off after this call land in the fresh inbox.
        """
        with self._lock:
            inbox = self.transfer_blocks
            self.transfer_blocks = [ParticleBlock() for _ in range(self.num_blocks)]
        return inbox

    # ==================== QUERIES ====================

    def count(self):
        """Number of live particles."""
        return sum(len(block) for block in self.particle_blocks)

    def inbox_count(self):
        return sum(len(block) for block in self.transfer_blocks)

    def block_sizes(self):
        return [len(block) for block in self.particle_blocks]

    def iter_block(self, block):
        """Removal-capable iterator over one live block."""
        return self.particle_blocks[block].iterator()

    def iter_particles(self):
        """Removal-capable iterator over all live blocks in block order."""
        return ChainedBlockIterator(self.particle_blocks)

    def find(self, part_id):
        """Live particle with the given id, or None."""
        for part in self.iter_particles():
            if part.id == part_id:
                return part
        return None

    def __repr__(self):
        return (f"MeshParticleStore(mesh={getattr(self.mesh, 'name', self.mesh)!r}, "
                f"blocks={self.block_sizes()}, inbox={self.inbox_count()})")
