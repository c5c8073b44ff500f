"""
Moment Deposition

Every particle that survives a pass deposits its weight into density and
weight * velocity into the (u, v) momentum fields at its final logical
coordinate. Workers deposit into private DepositBuffers; the buffers are
reduced into the mesh fields after the pass barrier, so the result does
not depend on how blocks were scheduled.

After both passes the mesh fields are finalized:
    u, v  <- (sum w*u, sum w*v) / (sum w)    average velocity
    den   <- (sum w) / node volume           number density
"""


class MeshMoments:
    """
    Density and momentum node fields of one species on one mesh.

    Attributes:
        den: Number density (extensive weight sum until finalized)
        u, v: Mean velocity components (weighted sums until finalized)
    """

    def __init__(self, den, u, v):
        self.den = den
        self.u = u
        self.v = v

    def clear(self):
        self.den.clear()
        self.u.clear()
        self.v.clear()

    def new_buffer(self):
        """Zeroed private accumulation buffer for one worker."""
        return DepositBuffer(self.den.zeros_like(), self.u.zeros_like(), self.v.zeros_like())

    def reduce(self, buffers):
        """
        Merge worker buffers into the mesh fields.

        Returns:
            total_momentum: Sum of the buffers' weight * |v|^2 tallies
        """
        total = 0.0
        for buf in buffers:
            self.den.add_field(buf.den)
            self.u.add_field(buf.u)
            self.v.add_field(buf.v)
            total += buf.total_momentum
        return total

    def finalize(self):
        """Turn accumulated sums into mean velocity and density."""
        self.u.divide_by_field(self.den)
        self.v.divide_by_field(self.den)
        self.den.scale_by_volume()


class DepositBuffer:
    """Private per-worker moment accumulator."""

    def __init__(self, den, u, v):
        self.den = den
        self.u = u
        self.v = v
        self.total_momentum = 0.0
        self.n_deposited = 0

    def deposit(self, part):
        """Scatter one surviving particle's moments."""
        lc = part.lc
        w = part.spwt
        self.den.scatter(lc, w)
        self.u.scatter(lc, part.vel[0] * w)
        self.v.scatter(lc, part.vel[1] * w)
        self.total_momentum += w * (part.vel[0]**2 + part.vel[1]**2 + part.vel[2]**2)
        self.n_deposited += 1
