"""
KineticSIM Test Suite

Tests organized by:
- test_particles.py: Particle records, block iterators, store balancing
- test_integrator.py: Euler and Boris velocity updates
- test_boundary.py: Surface hits, mesh exits, axisymmetric motion
- test_kinetic.py: Two-pass step, transfers, deposition, workers
"""
