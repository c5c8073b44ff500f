"""
Physical Constants and Kinetic Species Properties

All units in SI unless otherwise noted.
"""

import numpy as np

# ==================== FUNDAMENTAL CONSTANTS ====================

e = 1.602176634e-19  # Elementary charge [C]
m_e = 9.1093837015e-31  # Electron mass [kg]
m_p = 1.67262192369e-27  # Proton mass [kg]
kB = 1.380649e-23  # Boltzmann constant [J/K]
AMU = 1.66053906660e-27  # Atomic mass unit [kg]
eV = e  # 1 eV in Joules [J]

# Single precision machine epsilon, used as the self-collision guard
FLT_EPS = float(np.finfo(np.float32).eps)

# Logical coordinate placed just inside the plus edges of a mesh
PLUS_EDGE_OFFSET = 1.000001

# Exit fraction assigned to mesh faces the particle did not reach
UNREACHED_FACE = 99.0


# ==================== SPECIES DATABASE ====================

class KineticSpecies:
    """
    Properties of a particle-based (kinetic) species.

    Attributes:
        name: Species name
        mass: Particle mass [kg]
        charge: Particle charge [C] (0 for neutrals)
        spwt0: Default specific weight (real particles per macro-particle)
        index: Species index handed to surface material callbacks
    """

    def __init__(self, name, mass, charge=0.0, spwt0=1.0, index=0):
        if mass <= 0:
            raise ValueError(f"Species '{name}' mass must be positive, got {mass}")
        if spwt0 <= 0:
            raise ValueError(f"Species '{name}' spwt0 must be positive, got {spwt0}")

        self.name = name
        self.mass = mass
        self.charge = charge
        self.spwt0 = spwt0
        self.index = index

    @property
    def q_over_m(self):
        """Charge-to-mass ratio [C/kg]."""
        return self.charge / self.mass

    @classmethod
    def from_molwt(cls, name, molwt, charge=0.0, spwt0=1.0, index=0):
        """
        Build a species from its molecular weight.

        Args:
            name: Species name
            molwt: Molecular weight [amu]
            charge: Charge [C]
            spwt0: Default specific weight
            index: Species index

        Returns:
            species: KineticSpecies with mass = molwt * AMU
        """
        return cls(name, molwt * AMU, charge=charge, spwt0=spwt0, index=index)

    def __repr__(self):
        return (f"KineticSpecies(name={self.name!r}, mass={self.mass:.4g} kg, "
                f"charge={self.charge:.4g} C, spwt0={self.spwt0:.4g})")


# Commonly used species (index follows insertion order)
SPECIES = {
    'e': KineticSpecies('e', m_e, charge=-e, index=0),
    'H+': KineticSpecies('H+', m_p, charge=e, index=1),
    'O+': KineticSpecies.from_molwt('O+', 16.0, charge=e, index=2),
    'Xe+': KineticSpecies.from_molwt('Xe+', 131.293, charge=e, index=3),
    'O': KineticSpecies.from_molwt('O', 16.0, index=4),
}
