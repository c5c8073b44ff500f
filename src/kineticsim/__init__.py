"""
KineticSIM: Multi-Mesh Kinetic Particle Push

Particle push, boundary resolution and inter-mesh transfer for
particle-in-cell simulations on structured 2D meshes (XY, RZ, ZR).

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "AeriSat Systems"

# Import key classes for convenient access
from .constants import *
from .config import PushConfig
from .mesh import UniformMesh, Face, NodeType, DomainType
from .fields import Field2D
from .particles import Particle, MeshParticleStore
from .surfaces import Boundary, LineSegment, AbsorbingMaterial, SpecularMaterial, CLLMaterial
from .pic.kinetic import KineticMaterial

__all__ = [
    "PushConfig",
    "UniformMesh",
    "Face",
    "NodeType",
    "DomainType",
    "Field2D",
    "Particle",
    "MeshParticleStore",
    "Boundary",
    "LineSegment",
    "AbsorbingMaterial",
    "SpecularMaterial",
    "CLLMaterial",
    "KineticMaterial",
]
