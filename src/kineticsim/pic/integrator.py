"""
Velocity Integrator: Explicit Euler and Boris Rotation

Both kernels update a float64[3] velocity in place.

Euler (no magnetic field):
    v += (q/m) * E * dt

Boris (magnetic field present):
    t  = (q/m) * B * dt/2
    s  = 2t / (1 + |t|^2)
    v- = v + (q/m) * E * dt/2
    v' = v- + v- x t
    v+ = v- + v' x s
    v  = v+ + (q/m) * E * dt/2

The rotation from v- to v+ preserves |v| exactly (up to rounding) for any
sign and magnitude of dt, which is why the cross-product order matters.

Reference:
    Birdsall & Langdon (2004), "Plasma Physics via Computer Simulation", Sec. 4.3
    Boris (1970), Proc. 4th Conf. Numerical Simulation of Plasmas
"""

import numpy as np
from numba import njit


@njit
def euler_update(vel, E, q_over_m, dt):
    """
    Explicit velocity update v += (q/m) E dt.

    Args:
        vel: Velocity [3] [m/s] (modified in-place)
        E: Electric field [3] [V/m]
        q_over_m: Charge-to-mass ratio [C/kg]
        dt: Time step [s]
    """
    vel[0] += q_over_m * E[0] * dt
    vel[1] += q_over_m * E[1] * dt
    vel[2] += q_over_m * E[2] * dt


@njit
def boris_update(vel, E, B, q_over_m, dt):
    """
    Boris velocity rotation.

    Args:
        vel: Velocity [3] [m/s] (modified in-place)
        E: Electric field [3] [V/m]
        B: Magnetic field [3] [T]
        q_over_m: Charge-to-mass ratio [C/kg]
        dt: Time step [s], may be negative
    """
    half = 0.5 * q_over_m * dt

    tx = half * B[0]
    ty = half * B[1]
    tz = half * B[2]
    t_mag2 = tx * tx + ty * ty + tz * tz

    sx = 2.0 * tx / (1.0 + t_mag2)
    sy = 2.0 * ty / (1.0 + t_mag2)
    sz = 2.0 * tz / (1.0 + t_mag2)

    # v minus: first half acceleration
    vmx = vel[0] + half * E[0]
    vmy = vel[1] + half * E[1]
    vmz = vel[2] + half * E[2]

    # v prime = v- + v- x t
    vpx = vmx + (vmy * tz - vmz * ty)
    vpy = vmy + (vmz * tx - vmx * tz)
    vpz = vmz + (vmx * ty - vmy * tx)

    # v plus = v- + v' x s
    vplx = vmx + (vpy * sz - vpz * sy)
    vply = vmy + (vpz * sx - vpx * sz)
    vplz = vmz + (vpx * sy - vpy * sx)

    # second half acceleration
    vel[0] = vplx + half * E[0]
    vel[1] = vply + half * E[1]
    vel[2] = vplz + half * E[2]


def update_velocity(vel, E, B, q_over_m, dt):
    """
    Advance velocity with Euler if both in-plane B components are zero,
    Boris otherwise.

    Args:
        vel: Velocity [3] (modified in-place)
        E, B: Field samples, length 2 or 3
        q_over_m: Charge-to-mass ratio [C/kg]
        dt: Elapsed time [s]
    """
    E3 = _as_vector3(E)
    if B[0] == 0.0 and B[1] == 0.0:
        euler_update(vel, E3, q_over_m, dt)
    else:
        boris_update(vel, E3, _as_vector3(B), q_over_m, dt)


def sample_fields(store, lc):
    """
    Gather (E, B) at a logical coordinate from a mesh store's node fields.

    Returns:
        E, B: float64[3] with zero third component
    """
    E = np.array([store.Efi.gather(lc), store.Efj.gather(lc), 0.0])
    B = np.array([store.Bfi.gather(lc), store.Bfj.gather(lc), 0.0])
    return E, B


def _as_vector3(a):
    out = np.zeros(3, dtype=np.float64)
    n = min(len(a), 3)
    out[:n] = a[:n]
    return out
