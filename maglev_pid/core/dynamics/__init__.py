"""Dynamics package: vertical ball kinematics and the idealized attractor."""

from .ball_dynamics import (
    FORCE_PROFILES,
    Attractor,
    BallState,
    PhysicsConfig,
    PhysicsIntegrator,
)

__all__ = [
    'FORCE_PROFILES',
    'Attractor',
    'BallState',
    'PhysicsConfig',
    'PhysicsIntegrator',
]
