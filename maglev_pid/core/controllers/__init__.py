"""Controller package: PID position control of the levitated ball."""

from .pid_controller import (
    DT_EPSILON,
    PIDController,
    PIDParameters,
    PIDState,
)

__all__ = [
    'DT_EPSILON',
    'PIDController',
    'PIDParameters',
    'PIDState',
]
