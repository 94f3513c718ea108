"""
Wall-clock driver for interactive hosts.

A GUI redraws at whatever rate it manages, so the simulation has to be fed
from elapsed real time. Two schemes are provided:

- ``tick()``: fixed sampling. Steps the simulation by as many whole sampling
  periods as fit in the real time elapsed since start. The number of steps
  taken so far is kept as an integer, so simulated time never drifts from
  ``n * sampling_time``. Fractions of a period carry over to the next tick.
- ``tick_frame()``: variable sampling. Steps once with the raw frame time and
  leaves long frames to the integrator's substepping.
"""

import logging
import time
import warnings
from typing import Callable, List, Optional

from maglev_pid.core.errors import require_positive, require_positive_int
from maglev_pid.core.simulation.simulation_loop import SampleRecord, SimulationLoop

logger = logging.getLogger(__name__)


class RealTimeStepper:
    """
    Keeps a SimulationLoop in step with a wall clock.

    Parameters
    ----------
    simulation : SimulationLoop
        Simulation to drive
    sampling_rate : float
        Controller sampling rate [Hz] used by ``tick()``
    clock : Callable[[], float]
        Monotonic clock in seconds (injectable for tests)
    max_steps_per_tick : int
        Upper bound on steps per ``tick()``; older backlog is dropped with a
        warning so a stalled host does not freeze on catch-up
    """

    def __init__(
        self,
        simulation: SimulationLoop,
        sampling_rate: float = 100.0,
        clock: Callable[[], float] = time.perf_counter,
        max_steps_per_tick: int = 1000
    ):
        self.simulation = simulation
        self.clock = clock
        self.max_steps_per_tick = require_positive_int('max_steps_per_tick', max_steps_per_tick)
        self.sampling_rate = require_positive('sampling_rate', sampling_rate)

        self._base_time: float = clock()
        self._steps: int = 0
        self._last_frame: Optional[float] = None

    @property
    def sampling_time(self) -> float:
        return 1.0 / self.sampling_rate

    def set_sampling_rate(self, sampling_rate: float) -> None:
        """Change the rate; already simulated time is kept."""
        sampling_rate = require_positive('sampling_rate', sampling_rate)
        self._base_time += self._steps * self.sampling_time
        self._steps = 0
        self.sampling_rate = sampling_rate
        logger.info("Sampling rate set to %g Hz", sampling_rate)

    def tick(self) -> List[SampleRecord]:
        """
        Catch the simulation up with the wall clock.

        Returns
        -------
        List[SampleRecord]
            Records produced by this tick (possibly empty)
        """
        ts = self.sampling_time
        elapsed = self.clock() - self._base_time
        due = int(elapsed // ts) - self._steps
        if due <= 0:
            return []

        if due > self.max_steps_per_tick:
            dropped = due - self.max_steps_per_tick
            warnings.warn(
                f"Simulation fell {dropped} samples behind real time; dropping backlog"
            )
            self._steps += dropped
            due = self.max_steps_per_tick

        records = []
        for _ in range(due):
            records.append(self.simulation.step(ts))
            self._steps += 1
        return records

    def tick_frame(self) -> Optional[SampleRecord]:
        """
        Step once with the time elapsed since the previous frame.

        The first call only starts the frame clock and returns None, as do
        calls where the clock has not advanced.
        """
        now = self.clock()
        last, self._last_frame = self._last_frame, now
        if last is None or now <= last:
            return None
        return self.simulation.step(now - last)

    def reset(self) -> None:
        """Restart both clocks from now. The simulation itself is not reset."""
        self._base_time = self.clock()
        self._steps = 0
        self._last_frame = None
