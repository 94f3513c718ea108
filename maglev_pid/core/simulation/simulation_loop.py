"""
Closed-Loop Simulation of the Levitated Ball

This module wires the subsystems into one synchronous step:

    BallState -> PositionSensor -> PIDController -> Attractor -> PhysicsIntegrator
        ^                                                               |
        +---------------------------------------------------------------+

Each ``step(dt)`` call samples the ball, updates the controller, applies the
resulting force for dt and appends one SampleRecord to the history. The host
(GUI render tick, CLI loop, RealTimeStepper) decides how often to call it;
the loop never suspends, blocks or stops itself.

A step either completes or leaves everything as it was: ball state, PID
state, attractor strength, time and history are committed together after
integration succeeded. The only side effect of a failed step is the noise
generator having advanced. Arithmetic failures in the force law (division by
zero, overflow) surface as NumericInstabilityError.

State Machine:
-------------
RUNNING -- reset() --> RESET -- reinitialize --> RUNNING

Threading:
---------
Single-threaded. Hosts that render on another thread should hand over
``snapshot()`` results, which share no mutable data with the loop.
"""

import copy
import logging
import math
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Deque, List, Optional, Tuple

import pandas as pd

from maglev_pid.core.controllers.pid_controller import PIDController, PIDParameters, PIDState
from maglev_pid.core.dynamics.ball_dynamics import (
    Attractor,
    BallState,
    PhysicsConfig,
    PhysicsIntegrator,
)
from maglev_pid.core.errors import (
    NumericInstabilityError,
    require_bool,
    require_finite,
    require_positive,
    require_positive_int,
)
from maglev_pid.core.sensors.sensor_models import PositionSensor, RandomNoiseSource, SensorConfig

logger = logging.getLogger(__name__)


@dataclass
class SimulationConfig:
    """Configuration for the closed-loop simulation."""

    # Component configs
    pid: PIDParameters = field(default_factory=PIDParameters)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    physics: PhysicsConfig = field(default_factory=PhysicsConfig)

    # Target and initial condition
    setpoint: float = 0.5            # Target position [m]
    initial_position: float = 0.5    # [m]
    initial_velocity: float = 0.0    # [m/s]

    # Execution
    hold_ball: bool = False               # Freeze the ball, keep the loop running
    max_history: Optional[int] = None     # None = unbounded history

    def __post_init__(self):
        self.setpoint = require_finite('setpoint', self.setpoint)
        self.initial_position = require_finite('initial_position', self.initial_position)
        self.initial_velocity = require_finite('initial_velocity', self.initial_velocity)
        self.hold_ball = require_bool('hold_ball', self.hold_ball)
        if self.max_history is not None:
            self.max_history = require_positive_int('max_history', self.max_history)


@dataclass(frozen=True)
class SampleRecord:
    """
    One closed-loop sample.

    Position, velocity and measurement refer to the sampling instant
    ``timestamp``; ``control_output`` and ``actuator_force`` are what was then
    applied over the following step.
    """
    timestamp: float          # Simulation time of the sample [s]
    true_position: float      # [m]
    measured_position: float  # [m]
    control_output: float     # PID output (commanded strength) [N]
    velocity: float = 0.0     # [m/s]
    actuator_force: float = 0.0  # Attractor force applied over the step [N]
    setpoint: float = 0.0     # [m]


RECORD_COLUMNS = [
    'timestamp', 'true_position', 'measured_position', 'control_output',
    'velocity', 'actuator_force', 'setpoint',
]


class SimulationPhase(Enum):
    RUNNING = "running"
    RESET = "reset"


@dataclass(frozen=True)
class SimulationSnapshot:
    """Immutable copy of the simulation for display threads."""
    time: float
    phase: SimulationPhase
    ball_state: BallState
    pid_state: PIDState
    actuator_strength: float
    setpoint: float
    hold_ball: bool
    history: Tuple[SampleRecord, ...]


def history_to_frame(records) -> pd.DataFrame:
    """Convert a sequence of SampleRecords to a DataFrame (one row per sample)."""
    return pd.DataFrame([asdict(r) for r in records], columns=RECORD_COLUMNS)


class SimulationLoop:
    """
    Closed-loop levitated-ball simulation.

    Usage:
    ------
    >>> sim = SimulationLoop(SimulationConfig(setpoint=0.5))
    >>> record = sim.step(0.01)
    >>> frame = sim.history_frame()
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        noise_source: Optional[RandomNoiseSource] = None
    ):
        """
        Initialize the simulation.

        Parameters
        ----------
        config : Optional[SimulationConfig]
            Complete configuration; defaults to SimulationConfig()
        noise_source : Optional[RandomNoiseSource]
            Unit-normal noise source for the sensor. If omitted, one is
            created from ``config.sensor.seed``.
        """
        config = config if config is not None else SimulationConfig()
        # Pristine copy for restart()
        self._initial_config = copy.deepcopy(config)
        self.config = copy.deepcopy(config)

        self.sensor = PositionSensor(self.config.sensor, noise_source)
        self.controller = PIDController(self.config.pid)
        self.attractor = Attractor(self.config.physics)
        self.integrator = PhysicsIntegrator(self.config.physics)

        self.phase = SimulationPhase.RUNNING
        self.time: float = 0.0
        self.ball_state = BallState(self.config.initial_position, self.config.initial_velocity)
        self._history: Deque[SampleRecord] = deque(maxlen=self.config.max_history)

    # ------------------------------------------------------------------
    # Host interface
    # ------------------------------------------------------------------

    @property
    def setpoint(self) -> float:
        return self.config.setpoint

    @property
    def hold_ball(self) -> bool:
        return self.config.hold_ball

    def configure(
        self,
        pid: Optional[PIDParameters] = None,
        sensor: Optional[SensorConfig] = None,
        physics: Optional[PhysicsConfig] = None,
        setpoint: Optional[float] = None,
        hold_ball: Optional[bool] = None
    ) -> None:
        """
        Hot-update any subset of the configuration between steps.

        Everything is validated before anything is applied, so a rejected
        call leaves the previous configuration in place.
        """
        # replace() re-runs __post_init__ validation on possibly mutated configs
        pid = replace(pid) if pid is not None else None
        sensor = replace(sensor) if sensor is not None else None
        physics = replace(physics) if physics is not None else None
        if setpoint is not None:
            setpoint = require_finite('setpoint', setpoint)
        if hold_ball is not None:
            hold_ball = require_bool('hold_ball', hold_ball)

        if pid is not None:
            self.config.pid = pid
            self.controller.set_parameters(pid)
            logger.info("PID gains set to kp=%g ki=%g kd=%g", pid.kp, pid.ki, pid.kd)
        if sensor is not None:
            self.config.sensor = sensor
            self.sensor.configure(sensor)
            logger.info("Sensor noise sigma set to %g m", sensor.noise_standard_deviation)
        if physics is not None:
            self.config.physics = physics
            self.attractor.config = physics
            self.integrator.config = physics
            logger.info("Physics configuration updated: %s", physics)
        if setpoint is not None:
            self.config.setpoint = setpoint
            logger.info("Setpoint set to %g m", setpoint)
        if hold_ball is not None:
            self.config.hold_ball = hold_ball
            logger.info("Ball %s", "held" if self.config.hold_ball else "released")

    def reset(
        self,
        initial_position: Optional[float] = None,
        initial_velocity: Optional[float] = None
    ) -> None:
        """
        Reinitialize ball, controller, actuator, time and history.

        Gains, setpoint and the rest of the configuration are kept. If the
        sensor has a configured seed the noise generator is reseeded so the
        run replays identically.
        """
        position = self.config.initial_position if initial_position is None else \
            require_finite('initial_position', initial_position)
        velocity = self.config.initial_velocity if initial_velocity is None else \
            require_finite('initial_velocity', initial_velocity)

        self.phase = SimulationPhase.RESET
        self.config.initial_position = position
        self.config.initial_velocity = velocity
        self.ball_state = BallState(position, velocity)
        self.controller.reset()
        self.attractor.reset()
        if self.config.sensor.seed is not None:
            self.sensor.noise_source.reseed(self.config.sensor.seed)
        self.time = 0.0
        self._history.clear()
        self.phase = SimulationPhase.RUNNING
        logger.info("Simulation reset to position=%g m, velocity=%g m/s", position, velocity)

    def restart(self) -> None:
        """Discard all runtime configuration changes and reset."""
        initial = copy.deepcopy(self._initial_config)
        self.configure(
            pid=initial.pid,
            sensor=initial.sensor,
            physics=initial.physics,
            setpoint=initial.setpoint,
            hold_ball=initial.hold_ball,
        )
        self.config.max_history = initial.max_history
        self._history = deque(maxlen=initial.max_history)
        self.reset(initial.initial_position, initial.initial_velocity)

    def step(self, real_dt: float) -> SampleRecord:
        """
        Advance the closed loop by one sample.

        Parameters
        ----------
        real_dt : float
            Elapsed time since the previous step [s], must be > 0

        Returns
        -------
        SampleRecord
            The sample taken at the start of this step

        Raises
        ------
        InvalidInputError
            dt <= 0 or non-finite; nothing is changed
        NumericInstabilityError
            The force or integrated state is not finite; nothing is changed
        """
        dt = require_positive('dt', real_dt)

        state = self.ball_state
        setpoint = self.config.setpoint
        pid_before = self.controller.get_state()

        try:
            measured, output, strength, force, new_state = self._advance(state, setpoint, dt)
        except BaseException:
            self.controller.restore_state(pid_before)
            raise

        record = SampleRecord(
            timestamp=self.time,
            true_position=state.position,
            measured_position=measured,
            control_output=output,
            velocity=state.velocity,
            actuator_force=force,
            setpoint=setpoint,
        )

        self.ball_state = new_state
        self.attractor.strength = strength
        self.time += dt
        self._history.append(record)
        return record

    def _advance(self, state: BallState, setpoint: float, dt: float):
        """Uncommitted step: measure, control, compose force and integrate."""
        try:
            measured = self.sensor.measure(state.position)
            output = self.controller.update(measured, setpoint, dt)
            strength = self.attractor.limit(output, dt)
            force = self.attractor.force_at(state.position, strength)
            if not math.isfinite(force):
                raise NumericInstabilityError(
                    f"Non-finite attractor force {force} at position {state.position}"
                )

            if self.config.hold_ball:
                new_state = BallState(state.position, 0.0)
            else:
                new_state = self.integrator.advance(state, force, self.config.physics.mass, dt)
        except NumericInstabilityError:
            raise
        except ArithmeticError as e:
            # ZeroDivisionError / OverflowError from an unregularized force law
            raise NumericInstabilityError(
                f"Arithmetic failure at position {state.position}: {e!r}"
            ) from e
        return measured, output, strength, force, new_state

    def run(self, duration: float, dt: float) -> List[SampleRecord]:
        """Step with a fixed dt for ``duration`` seconds (headless runs)."""
        duration = require_positive('duration', duration)
        dt = require_positive('dt', dt)
        n_steps = max(1, int(round(duration / dt)))
        logger.debug("Running %d steps of %g s", n_steps, dt)
        return [self.step(dt) for _ in range(n_steps)]

    def history(self) -> Tuple[SampleRecord, ...]:
        """Read-only view of all recorded samples, oldest first."""
        return tuple(self._history)

    def history_frame(self) -> pd.DataFrame:
        """History as a DataFrame with one column per SampleRecord field."""
        return history_to_frame(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def snapshot(self) -> SimulationSnapshot:
        """Immutable copy of the current state and history."""
        return SimulationSnapshot(
            time=self.time,
            phase=self.phase,
            ball_state=self.ball_state,
            pid_state=self.controller.get_state(),
            actuator_strength=self.attractor.strength,
            setpoint=self.config.setpoint,
            hold_ball=self.config.hold_ball,
            history=tuple(self._history),
        )
