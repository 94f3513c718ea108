"""
Sensor package for the levitated-ball simulation.

Provides the injectable noise source and the noisy position sensor.
"""

from .sensor_models import (
    PositionSensor,
    RandomNoiseSource,
    SensorConfig,
)

__all__ = [
    'PositionSensor',
    'RandomNoiseSource',
    'SensorConfig',
]
