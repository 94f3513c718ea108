"""
Unit Tests for the Closed-Loop Simulation

This module tests the SimulationLoop orchestration including:
- Free fall with the controller disabled
- Exact measurements without noise
- Determinism under a fixed seed and reset
- Rejection of invalid steps without state changes
- Closed-loop convergence toward the setpoint
- Hot reconfiguration, hold, restart, snapshots and history
"""

import math

import numpy as np
import pytest

from maglev_pid.core.controllers.pid_controller import PIDParameters, PIDState
from maglev_pid.core.dynamics.ball_dynamics import BallState, PhysicsConfig
from maglev_pid.core.errors import InvalidInputError, NumericInstabilityError
from maglev_pid.core.sensors.sensor_models import RandomNoiseSource, SensorConfig
from maglev_pid.core.simulation.simulation_loop import (
    RECORD_COLUMNS,
    SampleRecord,
    SimulationConfig,
    SimulationLoop,
    SimulationPhase,
)

G = 9.81


def make_config(**overrides):
    """Noiseless default configuration with selected overrides."""
    kwargs = dict(
        pid=PIDParameters(kp=30.0, ki=10.0, kd=10.0),
        sensor=SensorConfig(noise_standard_deviation=0.0),
        physics=PhysicsConfig(gravity=G),
        setpoint=0.5,
        initial_position=0.25,
    )
    kwargs.update(overrides)
    return SimulationConfig(**kwargs)


class TestSimulationInitialization:
    """Test simulation initialization."""

    def test_default_initialization(self):
        sim = SimulationLoop()

        assert sim.time == 0.0
        assert sim.phase is SimulationPhase.RUNNING
        assert sim.history() == ()
        assert sim.ball_state == BallState(sim.config.initial_position, sim.config.initial_velocity)

    def test_config_is_copied(self):
        config = make_config()
        sim = SimulationLoop(config)

        config.setpoint = 99.0

        assert sim.setpoint == 0.5

    def test_invalid_config_rejected(self):
        with pytest.raises(InvalidInputError):
            SimulationConfig(setpoint=float('nan'))
        with pytest.raises(InvalidInputError):
            SimulationConfig(max_history=0)
        with pytest.raises(InvalidInputError):
            SimulationConfig(max_history=2.5)
        with pytest.raises(InvalidInputError):
            SimulationConfig(hold_ball="false")

    def test_configure_rejects_non_bool_hold(self):
        sim = SimulationLoop(make_config())

        with pytest.raises(InvalidInputError):
            sim.configure(hold_ball="false")

        assert sim.hold_ball is False


class TestFreeFall:
    """With all gains zero the ball falls freely."""

    @pytest.mark.parametrize('dt', [0.001, 0.01, 0.05])
    def test_matches_closed_form(self, dt):
        config = make_config(
            pid=PIDParameters(kp=0.0, ki=0.0, kd=0.0),
            initial_position=5.0,
        )
        sim = SimulationLoop(config)

        n_steps = int(round(1.0 / dt))
        for _ in range(n_steps):
            record = sim.step(dt)
            assert record.control_output == 0.0
            assert record.actuator_force == 0.0

        t = sim.time
        h = dt / sim.integrator.substep_count(dt)
        exact = 5.0 - 0.5 * G * t ** 2

        assert abs(sim.ball_state.position - exact) <= 0.5 * G * h * t + 1e-9
        assert sim.ball_state.velocity == pytest.approx(-G * t, abs=1e-9)


class TestMeasurement:
    """Sensor behavior inside the loop."""

    def test_zero_noise_measurement_is_exact(self):
        sim = SimulationLoop(make_config())

        for _ in range(100):
            record = sim.step(0.01)
            assert record.measured_position == record.true_position

    def test_noisy_measurement_differs(self):
        sim = SimulationLoop(make_config(sensor=SensorConfig(noise_standard_deviation=0.01, seed=1)))

        records = sim.run(1.0, 0.01)
        noise = np.array([r.measured_position - r.true_position for r in records])

        assert np.std(noise) == pytest.approx(0.01, rel=0.3)

    def test_injected_noise_source_is_used(self):
        source = RandomNoiseSource(1.0, seed=3)
        expected = RandomNoiseSource(1.0, seed=3).sample() * 0.05
        sim = SimulationLoop(
            make_config(sensor=SensorConfig(noise_standard_deviation=0.05)),
            noise_source=source,
        )

        record = sim.step(0.01)

        assert record.measured_position - record.true_position == pytest.approx(expected)


class TestDeterminism:
    """Same seed and initial condition give identical runs."""

    def test_reset_replays_identically(self):
        sim = SimulationLoop(make_config(sensor=SensorConfig(noise_standard_deviation=0.01, seed=7)))

        sim.reset(0.3, 0.0)
        first = [sim.step(0.01), sim.step(0.01)]
        sim.reset(0.3, 0.0)
        second = [sim.step(0.01), sim.step(0.01)]

        assert first == second

    def test_separate_instances_with_same_seed(self):
        config = make_config(sensor=SensorConfig(noise_standard_deviation=0.01, seed=11))

        run1 = SimulationLoop(config).run(0.5, 0.01)
        run2 = SimulationLoop(config).run(0.5, 0.01)

        assert run1 == run2


class TestInvalidStep:
    """Invalid dt is rejected and nothing changes."""

    @pytest.mark.parametrize('dt', [0.0, -0.01, float('nan'), float('inf')])
    def test_rejected_without_mutation(self, dt):
        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)

        ball_before = sim.ball_state
        pid_before = sim.controller.get_state()
        time_before = sim.time
        history_before = sim.history()

        with pytest.raises(InvalidInputError):
            sim.step(dt)

        assert sim.ball_state == ball_before
        assert sim.controller.get_state() == pid_before
        assert sim.time == time_before
        assert sim.history() == history_before

    def test_numeric_instability_surfaces_without_mutation(self):
        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)
        ball_before = sim.ball_state
        pid_before = sim.controller.get_state()
        strength_before = sim.attractor.strength
        n_before = len(sim.history())

        sim.configure(physics=PhysicsConfig(force_profile=lambda d, s: float('inf')))

        with pytest.raises(NumericInstabilityError):
            sim.step(0.01)

        assert sim.ball_state == ball_before
        assert sim.controller.get_state() == pid_before
        assert sim.attractor.strength == strength_before
        assert len(sim.history()) == n_before


    @pytest.mark.parametrize('profile, cause', [
        (lambda d, s: s / d ** 2, ZeroDivisionError),
        (lambda d, s: s * math.exp(1e3 - d), OverflowError),
    ])
    def test_arithmetic_failure_in_force_law(self, profile, cause):
        """An unregularized law at the attractor fails as NumericInstabilityError."""
        sim = SimulationLoop(make_config(
            physics=PhysicsConfig(attractor_position=1.0, force_profile=profile),
            initial_position=1.0,
        ))
        pid_before = sim.controller.get_state()

        with pytest.raises(NumericInstabilityError) as excinfo:
            sim.step(0.01)

        assert isinstance(excinfo.value.__cause__, cause)
        assert sim.controller.get_state() == pid_before
        assert sim.ball_state == BallState(1.0, 0.0)
        assert sim.attractor.strength == 0.0
        assert sim.history() == ()
        assert sim.time == 0.0

    def test_any_exception_restores_pid_state(self):
        def broken_profile(distance, strength):
            raise RuntimeError("profile failed")

        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)
        pid_before = sim.controller.get_state()
        sim.configure(physics=PhysicsConfig(force_profile=broken_profile))

        with pytest.raises(RuntimeError):
            sim.step(0.01)

        assert sim.controller.get_state() == pid_before

    def test_far_away_ball_does_not_overflow(self):
        """The softened law stays finite when the squared distance overflows."""
        sim = SimulationLoop(make_config())
        sim.reset(1e200, 0.0)

        record = sim.step(0.01)

        assert record.actuator_force == 0.0
        assert sim.ball_state.is_finite()
        assert sim.controller.state.initialized


class TestClosedLoop:
    """Closed-loop behavior."""

    def test_proportional_control_converges(self):
        """
        kp=1 from 5 m toward a 2 m setpoint with the attractor at the setpoint.

        With force_scale=100 the loop stiffness near the setpoint is ~100 N/m and
        drag of 25 N·s/m makes it overdamped, so the ball descends monotonically
        to the P-only equilibrium just below the setpoint where
        100*e/(1+e²) = g.
        """
        config = make_config(
            pid=PIDParameters(kp=1.0, ki=0.0, kd=0.0),
            physics=PhysicsConfig(
                gravity=G, mass=1.0, attractor_position=2.0,
                force_scale=100.0, damping=25.0,
            ),
            setpoint=2.0,
            initial_position=5.0,
            initial_velocity=0.0,
        )
        sim = SimulationLoop(config)

        records = sim.run(10.0, 0.01)
        positions = np.array([r.true_position for r in records] + [sim.ball_state.position])

        assert len(records) == 1000
        assert np.all(np.isfinite(positions))
        assert np.all(np.diff(positions) <= 1e-4), "Descent should be monotonic"

        expected_error = (100.0 - math.sqrt(100.0 ** 2 - 4 * G * G)) / (2 * G)
        final = sim.ball_state.position
        assert final == pytest.approx(2.0 - expected_error, abs=1e-3)
        assert abs(final - 2.0) < 0.15
        assert positions.min() > 2.0 - expected_error - 0.05
        assert positions.max() <= 5.0

    def test_pid_levitates_at_setpoint(self):
        """Full PID with default physics removes the steady-state offset."""
        sim = SimulationLoop(make_config())

        sim.run(20.0, 0.01)

        assert sim.ball_state.position == pytest.approx(0.5, abs=1e-3)
        assert abs(sim.ball_state.velocity) < 1e-3

    def test_jittery_frames_match_fixed_frames(self):
        """Variable dt drives the loop to the same equilibrium."""
        rng = np.random.default_rng(0)
        sim = SimulationLoop(make_config())
        t = 0.0
        while t < 20.0:
            dt = float(rng.uniform(0.005, 0.02))
            sim.step(dt)
            t += dt

        assert sim.ball_state.position == pytest.approx(0.5, abs=1e-3)


class TestHostInterface:
    """configure / reset / restart / hold / snapshot / history."""

    def test_timestamps_advance_by_dt(self):
        sim = SimulationLoop(make_config())
        records = sim.run(0.05, 0.01)

        assert [r.timestamp for r in records] == pytest.approx([0.0, 0.01, 0.02, 0.03, 0.04])
        assert sim.time == pytest.approx(0.05)

    def test_record_carries_setpoint(self):
        sim = SimulationLoop(make_config())
        sim.step(0.01)
        sim.configure(setpoint=0.6)

        record = sim.step(0.01)

        assert record.setpoint == 0.6

    def test_configure_hot_swaps_gains(self):
        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)
        integral = sim.controller.state.integral_accumulator

        sim.configure(pid=PIDParameters(kp=1.0, ki=2.0, kd=3.0))

        assert sim.controller.parameters.kp == 1.0
        assert sim.config.pid.kd == 3.0
        assert sim.controller.state.integral_accumulator == integral

    def test_configure_rejects_invalid_without_partial_apply(self):
        sim = SimulationLoop(make_config())

        with pytest.raises(InvalidInputError):
            sim.configure(pid=PIDParameters(kp=5.0), setpoint=float('inf'))

        assert sim.controller.parameters.kp == 30.0
        assert sim.setpoint == 0.5

    def test_configure_noise(self):
        sim = SimulationLoop(make_config())
        sim.configure(sensor=SensorConfig(noise_standard_deviation=0.02, seed=5))

        record = sim.step(0.01)

        assert record.measured_position != record.true_position

    def test_hold_ball(self):
        sim = SimulationLoop(make_config())
        sim.configure(hold_ball=True)

        records = sim.run(0.5, 0.01)

        assert sim.ball_state.position == 0.25
        assert sim.ball_state.velocity == 0.0
        assert all(r.true_position == 0.25 for r in records)
        assert records[-1].control_output > 0.0

        sim.configure(hold_ball=False)
        sim.step(0.01)
        sim.step(0.01)
        assert sim.ball_state.position != 0.25

    def test_reset(self):
        sim = SimulationLoop(make_config())
        sim.run(0.5, 0.01)

        sim.reset(initial_position=0.7, initial_velocity=-0.1)

        assert sim.phase is SimulationPhase.RUNNING
        assert sim.time == 0.0
        assert sim.history() == ()
        assert sim.ball_state == BallState(0.7, -0.1)
        assert sim.controller.get_state() == PIDState()
        assert sim.attractor.strength == 0.0
        # Gains survive a reset
        assert sim.controller.parameters.kp == 30.0

    def test_reset_without_arguments_reuses_last_initial_condition(self):
        sim = SimulationLoop(make_config())
        sim.reset(0.8, 0.0)
        sim.run(0.2, 0.01)

        sim.reset()

        assert sim.ball_state == BallState(0.8, 0.0)

    def test_reset_rejects_non_finite(self):
        sim = SimulationLoop(make_config())

        with pytest.raises(InvalidInputError):
            sim.reset(initial_position=float('nan'))

    def test_restart_restores_initial_configuration(self):
        sim = SimulationLoop(make_config())
        sim.configure(
            pid=PIDParameters(kp=1.0, ki=0.0, kd=0.0),
            setpoint=0.9,
            hold_ball=True,
        )
        sim.reset(0.1, 0.0)
        sim.run(0.1, 0.01)

        sim.restart()

        assert sim.controller.parameters.kp == 30.0
        assert sim.setpoint == 0.5
        assert sim.hold_ball is False
        assert sim.ball_state == BallState(0.25, 0.0)
        assert sim.history() == ()

    def test_history_is_read_only_copy(self):
        sim = SimulationLoop(make_config())
        sim.run(0.05, 0.01)

        history = sim.history()

        assert isinstance(history, tuple)
        assert all(isinstance(r, SampleRecord) for r in history)
        with pytest.raises(AttributeError):
            history[0].true_position = 1.0

    def test_max_history(self):
        sim = SimulationLoop(make_config(max_history=10))

        records = sim.run(0.5, 0.01)

        assert len(sim.history()) == 10
        assert sim.history()[-1] == records[-1]

    def test_history_frame(self):
        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)

        frame = sim.history_frame()

        assert list(frame.columns) == RECORD_COLUMNS
        assert len(frame) == 10
        assert frame['timestamp'].iloc[-1] == pytest.approx(0.09)

    def test_snapshot_is_isolated(self):
        sim = SimulationLoop(make_config())
        sim.run(0.1, 0.01)

        snap = sim.snapshot()
        sim.run(0.1, 0.01)

        assert len(snap.history) == 10
        assert snap.time == pytest.approx(0.1)
        assert snap.ball_state != sim.ball_state
        assert snap.phase is SimulationPhase.RUNNING
