"""
Simulation package: closed-loop orchestration, wall-clock driving and
performance analysis of the levitated ball.
"""

from .simulation_loop import (
    RECORD_COLUMNS,
    SampleRecord,
    SimulationConfig,
    SimulationLoop,
    SimulationPhase,
    SimulationSnapshot,
    history_to_frame,
)
from .realtime_clock import RealTimeStepper
from .performance_analyzer import PerformanceAnalyzer, PerformanceMetrics

__all__ = [
    'RECORD_COLUMNS',
    'SampleRecord',
    'SimulationConfig',
    'SimulationLoop',
    'SimulationPhase',
    'SimulationSnapshot',
    'history_to_frame',
    'RealTimeStepper',
    'PerformanceAnalyzer',
    'PerformanceMetrics',
]
