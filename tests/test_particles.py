"""
Unit tests for particle records and the block-partitioned store
"""

import threading

import pytest
import numpy as np
from kineticsim.mesh import UniformMesh
from kineticsim.fields import Field2D
from kineticsim.particles import (
    Particle,
    ParticleIdCounter,
    ParticleBlock,
    ChainedBlockIterator,
    MeshParticleStore,
)


def make_store(num_blocks=3):
    mesh = UniformMesh((0.0, 0.0), (1.0, 1.0), 11, 11, name="m")
    fields = [Field2D(mesh) for _ in range(4)]
    return MeshParticleStore(mesh, num_blocks, *fields)


def make_particle(pid=-1, x=0.5, y=0.5):
    part = Particle([x, y], [0.0, 0.0, 0.0], 1.0, 1.0)
    part.id = pid
    return part


class TestParticle:
    """Test Particle record."""

    def test_initialization(self):
        """Two position components are padded to three."""
        part = Particle([0.1, 0.2], [1.0, 2.0, 3.0], 5.0, 2.0, born_it=7)

        np.testing.assert_array_equal(part.pos, [0.1, 0.2, 0.0])
        np.testing.assert_array_equal(part.vel, [1.0, 2.0, 3.0])
        assert part.spwt == 5.0
        assert part.mass == 2.0
        assert part.lc is None
        assert part.dt == 0.0
        assert part.id == -1
        assert part.born_it == 7
        assert part.trace is False

    def test_nonpositive_weight_rejected(self):
        """Weight must be strictly positive."""
        with pytest.raises(ValueError):
            Particle([0.0, 0.0], [0.0, 0.0, 0.0], 0.0, 1.0)

    def test_logical_is_cached(self):
        """Logical coordinate is computed once and reused."""
        mesh = UniformMesh((0.0, 0.0), (1.0, 1.0), 11, 11)
        part = Particle([0.25, 0.5], [0.0, 0.0, 0.0], 1.0, 1.0)

        lc = part.logical(mesh)
        np.testing.assert_allclose(lc, [2.5, 5.0])
        assert part.logical(mesh) is lc

    def test_copy_is_independent(self):
        """Copies keep the id but own their arrays."""
        part = make_particle(pid=3)
        part.lc = np.array([1.0, 2.0])
        clone = part.copy()

        clone.pos[0] = 9.0
        clone.lc[0] = 9.0
        assert clone.id == 3
        assert part.pos[0] == 0.5
        assert part.lc[0] == 1.0

    def test_speed2(self):
        part = Particle([0.0, 0.0], [3.0, 4.0, 0.0], 1.0, 1.0)
        assert part.speed2() == 25.0


class TestParticleIdCounter:
    """Test id assignment."""

    def test_sequential(self):
        counter = ParticleIdCounter()
        assert [counter.next_id() for _ in range(3)] == [0, 1, 2]

    def test_unique_across_threads(self):
        """Concurrent callers never receive the same id."""
        counter = ParticleIdCounter(start=100)
        ids = []
        lock = threading.Lock()

        def grab():
            local = [counter.next_id() for _ in range(500)]
            with lock:
                ids.extend(local)

        threads = [threading.Thread(target=grab) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 2000
        assert len(set(ids)) == 2000
        assert min(ids) == 100


class TestBlockIterator:
    """Test swap-remove iteration over a block."""

    def test_visits_every_particle_once_while_removing(self):
        """Removing every even id still visits every particle exactly once."""
        block = ParticleBlock()
        for pid in range(10):
            block.add(make_particle(pid))

        visited = []
        it = block.iterator()
        for part in it:
            visited.append(part.id)
            if part.id % 2 == 0:
                it.remove()

        assert sorted(visited) == list(range(10))
        assert sorted(p.id for p in block.particles) == [1, 3, 5, 7, 9]

    def test_remove_all(self):
        block = ParticleBlock()
        for pid in range(5):
            block.add(make_particle(pid))

        it = block.iterator()
        n = 0
        for _ in it:
            it.remove()
            n += 1

        assert n == 5
        assert len(block) == 0

    def test_remove_without_next_raises(self):
        """remove() requires a preceding next()."""
        block = ParticleBlock()
        block.add(make_particle(0))
        it = block.iterator()

        with pytest.raises(RuntimeError):
            it.remove()

        next(it)
        it.remove()
        with pytest.raises(RuntimeError):
            it.remove()

    def test_empty_block(self):
        it = ParticleBlock().iterator()
        assert not it.has_next()
        with pytest.raises(StopIteration):
            next(it)


class TestChainedBlockIterator:
    """Test iteration across blocks."""

    def test_block_order(self):
        """Blocks are walked in index order, skipping empty ones."""
        blocks = [ParticleBlock() for _ in range(3)]
        blocks[0].add(make_particle(0))
        blocks[0].add(make_particle(1))
        blocks[2].add(make_particle(2))

        assert [p.id for p in ChainedBlockIterator(blocks)] == [0, 1, 2]

    def test_remove_across_blocks(self):
        blocks = [ParticleBlock() for _ in range(2)]
        for pid in range(4):
            blocks[pid % 2].add(make_particle(pid))

        it = ChainedBlockIterator(blocks)
        for part in it:
            if part.id in (1, 2):
                it.remove()

        remaining = sorted(p.id for b in blocks for p in b.particles)
        assert remaining == [0, 3]

    def test_no_blocks(self):
        assert list(ChainedBlockIterator([])) == []


class TestMeshParticleStore:
    """Test greedy block balancing and inbox handling."""

    def test_invalid_block_count(self):
        mesh = UniformMesh((0.0, 0.0), (1.0, 1.0), 3, 3)
        with pytest.raises(ValueError):
            MeshParticleStore(mesh, 0, None, None, None, None)

    def test_ties_go_to_lowest_block(self):
        store = make_store(num_blocks=3)
        store.add_particle(make_particle(0))
        assert store.block_sizes() == [1, 0, 0]

        store.add_particle(make_particle(1))
        assert store.block_sizes() == [1, 1, 0]

    def test_balanced_within_one(self):
        """Block sizes never differ by more than one."""
        store = make_store(num_blocks=3)
        for pid in range(10):
            store.add_particle(make_particle(pid))
            sizes = store.block_sizes()
            assert max(sizes) - min(sizes) <= 1

        assert store.block_sizes() == [4, 3, 3]
        assert store.count() == 10

    def test_balance_after_removal(self):
        """New particles refill the smallest block first."""
        store = make_store(num_blocks=2)
        for pid in range(4):
            store.add_particle(make_particle(pid))

        it = store.iter_block(1)
        for _ in it:
            it.remove()
        assert store.block_sizes() == [2, 0]

        store.add_particle(make_particle(10))
        assert store.block_sizes() == [2, 1]

    def test_transfer_inbox(self):
        """Inbox particles are separate from the live set."""
        store = make_store(num_blocks=2)
        store.add_transfer_particle(make_particle(0))
        store.add_transfer_particle(make_particle(1))

        assert store.count() == 0
        assert store.inbox_count() == 2
        assert [len(b) for b in store.transfer_blocks] == [1, 1]

    def test_detach_inbox(self):
        """Detaching returns the filled inbox and installs an empty one."""
        store = make_store(num_blocks=2)
        store.add_transfer_particle(make_particle(0))

        inbox = store.detach_inbox()
        assert sum(len(b) for b in inbox) == 1
        assert store.inbox_count() == 0

        store.add_transfer_particle(make_particle(1))
        assert sum(len(b) for b in inbox) == 1
        assert store.inbox_count() == 1

    def test_find(self):
        store = make_store()
        for pid in range(5):
            store.add_particle(make_particle(pid))

        assert store.find(3).id == 3
        assert store.find(42) is None

    def test_concurrent_inserts(self):
        """Concurrent inserts lose no particles."""
        store = make_store(num_blocks=4)

        def insert(offset):
            for k in range(250):
                store.add_transfer_particle(make_particle(offset + k))

        threads = [threading.Thread(target=insert, args=(1000 * n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.inbox_count() == 1000
        sizes = [len(b) for b in store.transfer_blocks]
        assert max(sizes) - min(sizes) <= 1
