"""
Tests for the boundary resolver (bounce loop, surface hits, mesh exits)
"""

import math

import pytest
import numpy as np
from kineticsim.constants import PLUS_EDGE_OFFSET, UNREACHED_FACE
from kineticsim.mesh import UniformMesh, Face, NodeType, DomainType
from kineticsim.particles import Particle
from kineticsim.surfaces import Boundary, AbsorbingMaterial, SpecularMaterial
from kineticsim.pic.boundary import (
    BoundaryResolver,
    PushState,
    StepContext,
    advance_position,
    clamp_logical,
    exit_face_fraction,
    exit_node,
    outside_logical_range,
)


def unit_mesh():
    """1 m x 1 m mesh with 0.1 m spacing (valid lc range [0, 10))."""
    return UniformMesh((0.0, 0.0), (1.0, 1.0), 11, 11, name="unit")


def make_particle(mesh, pos, vel, dt, spwt=2.0):
    part = Particle(pos, vel, spwt, 1.0)
    part.dt = dt
    part.logical(mesh)
    return part


def make_resolver(max_bounces=10, domain_type=DomainType.XY, lookup=None):
    ctx = StepContext(0.1, domain_type=domain_type, max_bounces=max_bounces)
    return BoundaryResolver(0, ctx, lookup if lookup is not None else (lambda mesh: None))


class TestLogicalHelpers:
    """Test logical range and exit fraction helpers."""

    def test_clamp(self):
        mesh = unit_mesh()
        lc = clamp_logical(np.array([-0.5, 12.0]), mesh)

        assert lc[0] == 0.0
        assert lc[1] == pytest.approx(11 - PLUS_EDGE_OFFSET)

    def test_outside_range(self):
        mesh = unit_mesh()

        assert not outside_logical_range([0.0, 9.99], mesh)
        assert outside_logical_range([10.0, 5.0], mesh)
        assert outside_logical_range([5.0, -1e-12], mesh)

    def test_exit_fraction_single_face(self):
        mesh = unit_mesh()
        face, t = exit_face_fraction([9.5, 5.0], [10.5, 5.0], mesh)

        assert face == Face.RIGHT
        assert t == pytest.approx(0.5 - 1e-6)

    def test_exit_fraction_corner(self):
        """The face reached first wins."""
        mesh = unit_mesh()
        face, t = exit_face_fraction([9.5, 9.8], [10.5, 10.3], mesh)

        assert face == Face.TOP
        assert t == pytest.approx((10 - PLUS_EDGE_OFFSET + 1 - 9.8) / 0.5)

    def test_exit_fraction_lower_faces(self):
        mesh = unit_mesh()

        face, t = exit_face_fraction([0.5, 5.0], [-0.5, 5.0], mesh)
        assert face == Face.LEFT
        assert t == pytest.approx(0.5)

        face, t = exit_face_fraction([5.0, 0.2], [5.0, -0.2], mesh)
        assert face == Face.BOTTOM
        assert t == pytest.approx(0.5)

    def test_unreached_sentinel(self):
        """Nothing crossed leaves every face at the sentinel."""
        mesh = unit_mesh()
        face, t = exit_face_fraction([5.0, 5.0], [6.0, 5.0], mesh)

        assert face == Face.RIGHT
        assert t == UNREACHED_FACE

    def test_exit_node(self):
        mesh = unit_mesh()

        assert exit_node(Face.RIGHT, [9.999999, 4.2], mesh) == (10, 4)
        assert exit_node(Face.LEFT, [0.0, 7.5], mesh) == (0, 7)
        assert exit_node(Face.TOP, [3.3, 9.999999], mesh) == (3, 10)
        assert exit_node(Face.BOTTOM, [3.3, 0.0], mesh) == (3, 0)


class TestFreeMotion:
    """Particles that never reach a boundary."""

    def test_settles_with_full_step(self):
        mesh = unit_mesh()
        part = make_particle(mesh, [0.5, 0.5], [1.0, -2.0, 0.0], 0.1)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.SETTLED
        assert part.dt == 0.0
        np.testing.assert_allclose(part.pos[:2], [0.6, 0.3])
        np.testing.assert_allclose(part.lc, [6.0, 3.0])
        assert resolver.stats.settled == 1

    def test_out_of_plane_motion_xy(self):
        """In XY the third component is a plain coordinate."""
        mesh = unit_mesh()
        part = make_particle(mesh, [0.5, 0.5], [0.0, 0.0, 3.0], 0.1)
        make_resolver().move(part, mesh)

        assert part.pos[2] == pytest.approx(0.3)


class TestMeshExits:
    """Test OPEN, SYMMETRY and PERIODIC faces."""

    def test_open_face_escapes(self):
        mesh = unit_mesh()
        part = make_particle(mesh, [0.95, 0.5], [1.0, 0.0, 0.0], 0.1)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.ESCAPED
        assert resolver.stats.escaped == 1
        # Clipped to the face with the unused time left over
        assert part.pos[0] == pytest.approx(1.0, abs=1e-6)
        assert part.dt == pytest.approx(0.05, abs=1e-6)

    def test_symmetry_face_reflects(self):
        mesh = unit_mesh()
        mesh.set_face_type(Face.LEFT, NodeType.SYMMETRY)
        part = make_particle(mesh, [0.05, 0.5], [-1.0, 0.5, 0.0], 0.1)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.SETTLED
        assert resolver.stats.reflected == 1
        np.testing.assert_allclose(part.vel, [1.0, 0.5, 0.0])
        assert part.pos[0] == pytest.approx(0.05, abs=1e-12)
        assert part.pos[1] == pytest.approx(0.55, abs=1e-12)
        assert 0.0 <= part.lc[0] < mesh.ni - 1

    def test_periodic_face_wraps(self):
        """Exiting on the right re-enters on the left, one width back."""
        mesh = unit_mesh()
        mesh.set_face_type(Face.LEFT, NodeType.PERIODIC)
        mesh.set_face_type(Face.RIGHT, NodeType.PERIODIC)
        part = make_particle(mesh, [0.95, 0.5], [1.0, 0.0, 0.0], 0.1)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.SETTLED
        assert resolver.stats.wrapped == 1
        assert part.pos[0] == pytest.approx(0.05, abs=1e-9)
        np.testing.assert_allclose(part.lc, [0.5, 5.0], atol=1e-7)

    def test_unknown_face_escapes(self):
        """Unclassified boundary nodes behave as OPEN."""
        mesh = unit_mesh()
        mesh.set_face_type(Face.BOTTOM, NodeType.UNKNOWN)
        part = make_particle(mesh, [0.5, 0.05], [0.0, -1.0, 0.0], 0.1)

        assert make_resolver().move(part, mesh) is PushState.ESCAPED

    def test_mesh_face_without_neighbor_store_escapes(self):
        other = UniformMesh((1.0, 0.0), (2.0, 1.0), 11, 11, name="other")
        mesh = unit_mesh()
        mesh.connect(Face.RIGHT, other)
        part = make_particle(mesh, [0.95, 0.5], [1.0, 0.0, 0.0], 0.1)
        resolver = make_resolver()

        assert resolver.move(part, mesh) is PushState.ESCAPED
        assert resolver.stats.transferred == 0


class TestSurfaceHits:
    """Test surface impacts inside the mesh."""

    def wall(self, material, name="wall", x=0.7):
        # x1 -> x2 runs upward so the normal points to +x
        return Boundary(name, [(x, 0.0), (x, 1.0)], material=material)

    def test_absorbing_wall(self):
        mesh = unit_mesh()
        wall = Boundary("wall", [(0.7, 0.0), (0.7, 1.0)], material=AbsorbingMaterial())
        mesh.attach_boundary(wall)
        part = make_particle(mesh, [0.65, 0.5], [1.0, 0.0, 0.0], 0.1, spwt=3.0)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.ABSORBED
        assert resolver.stats.absorbed == 1
        assert resolver.stats.surface_hits == 1
        assert wall.surface_mass[0] == 3.0
        np.testing.assert_allclose(wall.surface_momentum[0], [3.0, 0.0, 0.0])
        assert part.pos[0] == pytest.approx(0.7)

    def test_specular_wall_bounces_back(self):
        """After reflecting, the wall behind the particle is ignored."""
        mesh = unit_mesh()
        wall = self.wall(SpecularMaterial())
        mesh.attach_boundary(wall)
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)
        resolver = make_resolver()

        state = resolver.move(part, mesh)

        assert state is PushState.SETTLED
        assert resolver.stats.surface_hits == 1
        np.testing.assert_allclose(part.vel, [1.0, 0.0, 0.0])
        assert part.pos[0] == pytest.approx(0.75)

    def test_no_material_absorbs(self):
        mesh = unit_mesh()
        mesh.attach_boundary(self.wall(None))
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)

        assert make_resolver().move(part, mesh) is PushState.ABSORBED

    def test_virtual_boundary_ignored(self):
        from kineticsim.surfaces import BoundaryType

        mesh = unit_mesh()
        wall = Boundary("gate", [(0.7, 0.0), (0.7, 1.0)], type=BoundaryType.VIRTUAL,
                        material=AbsorbingMaterial())
        mesh.attach_boundary(wall)
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)

        assert make_resolver().move(part, mesh) is PushState.SETTLED
        assert part.pos[0] == pytest.approx(0.65)

    def test_self_collision_guard(self):
        """A particle on the wall moving away from it registers no hit."""
        mesh = unit_mesh()
        wall = self.wall(AbsorbingMaterial())
        part = make_particle(mesh, [0.7, 0.5], [1.0, 0.0, 0.0], 0.1)
        old = part.pos[:2].copy()
        part.pos[0] = 0.8

        assert make_resolver().first_surface_hit(part, set(wall.segments), old) is None

    def test_earliest_hit_wins(self):
        mesh = unit_mesh()
        near = self.wall(AbsorbingMaterial(), name="near", x=0.6)
        far = self.wall(AbsorbingMaterial(), name="far", x=0.4)
        part = make_particle(mesh, [0.7, 0.5], [-1.0, 0.0, 0.0], 0.1)
        old = part.pos[:2].copy()
        part.pos[0] = 0.3

        seg, t_surface, t_travel = make_resolver().first_surface_hit(
            part, set(near.segments) | set(far.segments), old)

        assert seg.boundary is near
        assert t_travel == pytest.approx(0.25)
        assert t_surface == pytest.approx(0.5)

    def test_tie_break_lowest_segment_id(self):
        """Coincident hits go to the lowest segment id."""
        mesh = unit_mesh()
        # Out and back along the same line: two coincident segments
        wall = Boundary("wall", [(0.7, 1.0), (0.7, 0.0), (0.7, 1.0)])
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)
        old = part.pos[:2].copy()
        part.pos[0] = 0.65

        seg, _, _ = make_resolver().first_surface_hit(part, set(wall.segments), old)
        assert seg.id == 0

    def test_tie_break_boundary_name(self):
        """Coincident hits on different boundaries go to the first name."""
        mesh = unit_mesh()
        b = self.wall(AbsorbingMaterial(), name="b")
        a = self.wall(AbsorbingMaterial(), name="a")
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)
        old = part.pos[:2].copy()
        part.pos[0] = 0.65

        seg, _, _ = make_resolver().first_surface_hit(
            part, set(b.segments) | set(a.segments), old)
        assert seg.boundary is a

    def test_bounce_cap_truncates(self):
        """Hitting the bounce cap drops the remaining time."""
        mesh = unit_mesh()
        mesh.attach_boundary(self.wall(SpecularMaterial()))
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)
        resolver = make_resolver(max_bounces=1)

        state = resolver.move(part, mesh)

        assert state is PushState.SETTLED
        assert resolver.stats.truncated == 1
        assert part.dt == 0.0
        assert part.pos[0] == pytest.approx(0.7)

    def test_tracer_called_per_bounce(self):
        mesh = unit_mesh()
        mesh.attach_boundary(self.wall(SpecularMaterial()))
        part = make_particle(mesh, [0.75, 0.5], [-1.0, 0.0, 0.0], 0.1)
        part.trace = True
        calls = []

        ctx = StepContext(0.1, iteration=7, tracer=lambda p, it: calls.append((p.id, it)))
        BoundaryResolver(0, ctx, lambda m: None).move(part, mesh)

        # After the impact and after settling
        assert calls == [(-1, 7), (-1, 7)]


class TestAxisymmetric:
    """Test RZ / ZR position updates."""

    def test_rz_pure_azimuthal_motion(self):
        """Out-of-plane motion increases radius and keeps speed."""
        part = Particle([1.0, 0.0], [0.0, 0.0, 1.0], 1.0, 1.0)
        part.dt = 0.5

        advance_position(part, DomainType.RZ)

        assert part.pos[0] == pytest.approx(math.sqrt(1.25))
        assert part.pos[1] == 0.0
        assert part.pos[2] == pytest.approx(math.asin(0.5 / math.sqrt(1.25)))
        assert np.linalg.norm(part.vel) == pytest.approx(1.0)
        # Velocity is now partly radial
        assert part.vel[0] > 0.0

    def test_zr_radius_in_second_component(self):
        part = Particle([0.0, 2.0], [0.0, 0.0, 4.0], 1.0, 1.0)
        part.dt = 0.5

        advance_position(part, DomainType.ZR)

        assert part.pos[1] == pytest.approx(math.sqrt(8.0))
        assert part.pos[0] == 0.0
        assert np.linalg.norm(part.vel) == pytest.approx(4.0)
        assert part.vel[1] > 0.0

    def test_axis_particle_without_motion(self):
        """r = 0 with no displacement is left untouched."""
        part = Particle([0.0, 0.5], [0.0, 1.0, 0.0], 1.0, 1.0)
        part.dt = 0.1

        advance_position(part, DomainType.RZ)

        assert part.pos[0] == 0.0
        assert part.pos[1] == pytest.approx(0.6)

    def test_rz_move_in_mesh(self):
        mesh = UniformMesh((0.0, 0.0), (1.0, 1.0), 11, 11, domain_type=DomainType.RZ)
        part = make_particle(mesh, [0.3, 0.5], [0.0, 0.0, 4.0], 0.1)

        state = make_resolver(domain_type=DomainType.RZ).move(part, mesh)

        assert state is PushState.SETTLED
        assert part.pos[0] == pytest.approx(0.5)
        assert part.lc[0] == pytest.approx(5.0)
