"""
PID-controlled magnetic levitation of a ball.

The package simulates one ball on a vertical axis, pulled up by an idealized
attractor whose strength is set by a PID controller from a noisy position
measurement. Display and user interaction are left to the host; the host
drives the simulation through ``SimulationLoop.step(dt)``.
"""

from maglev_pid.core.controllers import PIDController, PIDParameters, PIDState
from maglev_pid.core.dynamics import Attractor, BallState, PhysicsConfig, PhysicsIntegrator
from maglev_pid.core.errors import InvalidInputError, NumericInstabilityError, SimulationError
from maglev_pid.core.sensors import PositionSensor, RandomNoiseSource, SensorConfig
from maglev_pid.core.simulation import (
    PerformanceAnalyzer,
    PerformanceMetrics,
    RealTimeStepper,
    SampleRecord,
    SimulationConfig,
    SimulationLoop,
    SimulationPhase,
    SimulationSnapshot,
)

__version__ = "0.1.0"

__all__ = [
    'Attractor',
    'BallState',
    'InvalidInputError',
    'NumericInstabilityError',
    'PerformanceAnalyzer',
    'PerformanceMetrics',
    'PhysicsConfig',
    'PhysicsIntegrator',
    'PIDController',
    'PIDParameters',
    'PIDState',
    'PositionSensor',
    'RandomNoiseSource',
    'RealTimeStepper',
    'SampleRecord',
    'SensorConfig',
    'SimulationConfig',
    'SimulationError',
    'SimulationLoop',
    'SimulationPhase',
    'SimulationSnapshot',
]
