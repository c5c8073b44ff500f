"""
Two-Mesh Ion Beam Demonstration

Demonstrates the multi-mesh kinetic push:
- Two uniform meshes sharing a face (particles handed off between them)
- Symmetry plane on the lower edge, open faces elsewhere
- Uniform transverse magnetic field on the downstream mesh (Boris rotation)
- Absorbing plate inside the downstream mesh
- Density moments per mesh

Physics:
    Xe+ ions injected near the left edge drift to the right
    -> cross into the second mesh
    -> get deflected by B
    -> part of the beam lands on the plate, the rest leaves the domain
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from kineticsim import (
    PushConfig,
    UniformMesh,
    Face,
    NodeType,
    Field2D,
    Boundary,
    AbsorbingMaterial,
    KineticMaterial,
)
from kineticsim.constants import SPECIES
from kineticsim.diagnostics import ParticleTracer, block_balance, print_step_summary

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# ==================== SIMULATION PARAMETERS ====================

# Domain: two 5 cm x 2 cm meshes side by side
L = 0.05
H = 0.02
ni, nj = 51, 21

# Beam
n_inject = 200  # Particles injected per step
v_beam = 2e4  # Drift velocity [m/s]
v_spread = 5e2  # Thermal spread [m/s]
beam_height = 0.01

# Fields on the downstream mesh
B_y = 0.05  # [T]

# Time integration
dt = 5e-8
n_steps = 150

# ==================== SETUP ====================

upstream = UniformMesh((0.0, 0.0), (L, H), ni, nj, name="upstream")
downstream = UniformMesh((L, 0.0), (2 * L, H), ni, nj, name="downstream")
upstream.connect(Face.RIGHT, downstream)
downstream.connect(Face.LEFT, upstream)
for mesh in (upstream, downstream):
    mesh.set_face_type(Face.BOTTOM, NodeType.SYMMETRY)

plate = Boundary("plate", [(1.6 * L, H), (1.6 * L, 0.4 * H)], material=AbsorbingMaterial())
downstream.attach_boundary(plate)

config = PushConfig(dt=dt, num_blocks=4, max_workers=4, trace_ids={0, 1, 2})
tracer = ParticleTracer()
ions = KineticMaterial(SPECIES['Xe+'], config, tracer=tracer)

ions.add_mesh(upstream)
Bfj = Field2D(downstream)
Bfj.fill(B_y)
ions.add_mesh(downstream, Bfj=Bfj)

rng = np.random.default_rng(42)

# ==================== MAIN LOOP ====================

for it in range(n_steps):
    pos = np.column_stack([
        rng.uniform(0.0, 0.002, n_inject),
        rng.uniform(0.0, beam_height, n_inject),
    ])
    vel = rng.normal(0.0, v_spread, (n_inject, 3))
    vel[:, 0] += v_beam
    ions.add_particles(pos, vel, spwt=1e6, iteration=it)

    ions.update_fields(iteration=it)

    if it % 25 == 0:
        print_step_summary(ions, it)

print(f"Final block sizes: {block_balance(ions)}")
print(f"Mass deposited on plate: {plate.surface_mass.sum():.3e} (real particles)")

# ==================== PLOTTING ====================

fig, axes = plt.subplots(2, 1, figsize=(12, 7))

vmax = max(ions.get_moments(m).den.data.max() for m in (upstream, downstream))
for mesh in (upstream, downstream):
    den = ions.get_moments(mesh).den.data
    extent = [mesh.x0[0] * 100, mesh.xd[0] * 100, mesh.x0[1] * 100, mesh.xd[1] * 100]
    im = axes[0].imshow(den.T, origin="lower", extent=extent, vmin=0.0, vmax=vmax,
                        aspect="auto", cmap="viridis")

axes[0].plot([1.6 * L * 100] * 2, [H * 100, 0.4 * H * 100], "r-", lw=2, label="plate")
axes[0].axvline(L * 100, color="w", ls="--", lw=1)
axes[0].set_xlim(0, 2 * L * 100)
axes[0].set_ylabel("y [cm]")
axes[0].set_title(f"Xe+ density after {n_steps} steps")
axes[0].legend(loc="upper left")
fig.colorbar(im, ax=axes[0], label="n [m^-3]")

for part_id, history in tracer.samples.items():
    xy = np.array([pos for _, pos, _ in history])
    axes[1].plot(xy[:, 0] * 100, xy[:, 1] * 100, ".-", ms=2, label=f"id {part_id}")
axes[1].axvline(L * 100, color="k", ls="--", lw=1)
axes[1].set_xlim(0, 2 * L * 100)
axes[1].set_ylim(0, H * 100)
axes[1].set_xlabel("x [cm]")
axes[1].set_ylabel("y [cm]")
axes[1].set_title("Traced particles")
axes[1].legend()

plt.tight_layout()
output_file = "two_mesh_beam.png"
plt.savefig(output_file, dpi=150)
print(f"Saved {output_file}")
plt.show()
