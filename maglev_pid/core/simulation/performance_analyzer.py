"""
Performance Analyzer for the Levitated Ball

Computes classic step-response and tracking metrics from a simulation
history, for comparing gain sets and noise levels.

Key Metrics:
-----------
1. Tracking error: RMS / peak / mean-absolute of (setpoint - true position)
2. Steady-state error: mean error over the last ``steady_state_fraction``
   of the analysis window
3. Overshoot: largest excursion past the setpoint, as % of the initial step
4. Settling time: first time after which |error| stays inside the band
   ``settling_threshold * |initial step|``
5. Control effort: RMS and peak controller output
6. Sensor noise: RMS of (measured - true position)
"""

import math
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from maglev_pid.core.simulation.simulation_loop import SampleRecord, history_to_frame


@dataclass
class PerformanceMetrics:
    """
    Container for computed performance metrics.

    Positions in meters, times in seconds, control effort in newtons.
    """
    # Tracking
    rms_error: float = 0.0
    peak_error: float = 0.0
    mean_abs_error: float = 0.0
    steady_state_error: float = 0.0

    # Step response
    initial_step: float = 0.0
    overshoot_percent: float = 0.0
    settling_time: float = math.nan   # NaN if never settled
    settled: bool = False

    # Control effort
    rms_control: float = 0.0
    peak_control: float = 0.0

    # Plant / sensor
    min_position: float = 0.0
    max_position: float = 0.0
    measurement_noise_rms: float = 0.0

    # Window
    total_duration: float = 0.0
    sample_count: int = 0

    metadata: Dict[str, Any] = field(default_factory=dict)


class PerformanceAnalyzer:
    """
    Step-response analysis of a levitation run.

    Usage:
    ------
    >>> analyzer = PerformanceAnalyzer(settling_threshold=0.02)
    >>> metrics = analyzer.analyze(sim.history())
    >>> print(f"RMS error: {metrics.rms_error:.4f} m")
    """

    def __init__(
        self,
        settling_threshold: float = 0.02,     # 2% of the initial step
        steady_state_fraction: float = 0.1,   # last 10% of the window
    ):
        if not 0.0 < settling_threshold < 1.0:
            raise ValueError(f"settling_threshold must be in (0, 1), got {settling_threshold}")
        if not 0.0 < steady_state_fraction <= 1.0:
            raise ValueError(
                f"steady_state_fraction must be in (0, 1], got {steady_state_fraction}"
            )
        self.settling_threshold = settling_threshold
        self.steady_state_fraction = steady_state_fraction

    def analyze(
        self,
        history: Union[pd.DataFrame, Sequence[SampleRecord]],
        start_time: float = 0.0,
        end_time: Optional[float] = None
    ) -> PerformanceMetrics:
        """
        Compute metrics over ``[start_time, end_time]``.

        Parameters
        ----------
        history : DataFrame or sequence of SampleRecord
            Simulation history; a DataFrame must carry the SampleRecord columns
        start_time : float
            Start of analysis window [s]
        end_time : Optional[float]
            End of analysis window [s] (None = until the last sample)

        Returns
        -------
        PerformanceMetrics
            Computed metrics (all zero with a warning for an empty window)
        """
        frame = history if isinstance(history, pd.DataFrame) else history_to_frame(history)
        metrics = PerformanceMetrics()

        if 'timestamp' not in frame.columns:
            raise ValueError("History must contain a 'timestamp' column")

        mask = frame['timestamp'] >= start_time
        if end_time is not None:
            mask &= frame['timestamp'] <= end_time
        window = frame.loc[mask]

        if window.empty:
            warnings.warn("Empty time window, returning zero metrics")
            return metrics

        t = window['timestamp'].to_numpy(dtype=float)
        position = window['true_position'].to_numpy(dtype=float)
        setpoint = window['setpoint'].to_numpy(dtype=float)
        error = setpoint - position

        metrics.sample_count = len(window)
        metrics.total_duration = float(t[-1] - t[0])

        metrics = self._compute_tracking_metrics(error, metrics)
        metrics = self._compute_step_metrics(t, position, setpoint, error, metrics)

        control = window['control_output'].to_numpy(dtype=float)
        metrics.rms_control = float(np.sqrt(np.mean(control ** 2)))
        metrics.peak_control = float(np.max(np.abs(control)))

        metrics.min_position = float(np.min(position))
        metrics.max_position = float(np.max(position))
        noise = window['measured_position'].to_numpy(dtype=float) - position
        metrics.measurement_noise_rms = float(np.sqrt(np.mean(noise ** 2)))

        metrics.metadata = {
            'start_time': float(t[0]),
            'end_time': float(t[-1]),
            'settling_threshold': self.settling_threshold,
        }
        return metrics

    def _compute_tracking_metrics(
        self,
        error: np.ndarray,
        metrics: PerformanceMetrics
    ) -> PerformanceMetrics:
        metrics.rms_error = float(np.sqrt(np.mean(error ** 2)))
        metrics.peak_error = float(np.max(np.abs(error)))
        metrics.mean_abs_error = float(np.mean(np.abs(error)))

        n_tail = max(1, int(math.ceil(len(error) * self.steady_state_fraction)))
        metrics.steady_state_error = float(np.mean(error[-n_tail:]))
        return metrics

    def _compute_step_metrics(
        self,
        t: np.ndarray,
        position: np.ndarray,
        setpoint: np.ndarray,
        error: np.ndarray,
        metrics: PerformanceMetrics
    ) -> PerformanceMetrics:
        """Overshoot and settling time relative to the first sample's error."""
        step = float(error[0])
        metrics.initial_step = step
        if step == 0.0:
            # Started on target: nothing to overshoot, settled from the start
            metrics.settled = bool(np.all(np.abs(error) <= 1e-12))
            metrics.settling_time = 0.0 if metrics.settled else math.nan
            return metrics

        # Excursion past the setpoint in the direction of travel
        beyond = (position - setpoint) * np.sign(step)
        metrics.overshoot_percent = float(max(0.0, np.max(beyond)) / abs(step) * 100.0)

        band = self.settling_threshold * abs(step)
        outside = np.flatnonzero(np.abs(error) > band)
        if len(outside) == 0:
            metrics.settled = True
            metrics.settling_time = 0.0
        elif outside[-1] < len(error) - 1:
            metrics.settled = True
            metrics.settling_time = float(t[outside[-1] + 1] - t[0])
        return metrics
