#!/usr/bin/env python3
"""
Command-line runner for the levitated-ball PID simulation.

Runs a headless session with a fixed time step, prints a performance summary
and optionally writes the sample history as CSV.

Usage:
    python -m maglev_pid.runner --duration 10 --dt 0.01 --kp 30 --ki 10 --kd 10
    python -m maglev_pid.runner --config my_run.json --output history.csv
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

from maglev_pid.core.controllers.pid_controller import PIDParameters
from maglev_pid.core.dynamics.ball_dynamics import PhysicsConfig
from maglev_pid.core.errors import InvalidInputError, SimulationError, require_positive
from maglev_pid.core.logging_config import setup_logging
from maglev_pid.core.sensors.sensor_models import SensorConfig
from maglev_pid.core.simulation.performance_analyzer import PerformanceAnalyzer
from maglev_pid.core.simulation.simulation_loop import SimulationConfig, SimulationLoop

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default_config.json"

# Run parameters that are not part of SimulationConfig
RUN_DEFAULTS = {'duration': 10.0, 'dt': 0.01}
CONFIG_SECTIONS = ("simulation", "controller", "sensor", "physics")


def load_config(path: Optional[Path] = None) -> dict:
    """Load a JSON run configuration; a missing default file yields {}."""
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        if path is not None:
            raise InvalidInputError(f"Config file not found: {config_path}")
        logger.warning("Config file not found at %s, using built-in defaults", config_path)
        return {}

    try:
        with open(config_path, 'r') as f:
            raw_config = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Failed to parse JSON config at {config_path}: {e}") from e
    check_layout(raw_config)
    return raw_config


def check_layout(raw_config) -> None:
    """Top level and every known section must be JSON objects."""
    if not isinstance(raw_config, dict):
        raise InvalidInputError(
            f"Configuration must be a JSON object, got {type(raw_config).__name__}"
        )
    for section in CONFIG_SECTIONS:
        if not isinstance(raw_config.get(section, {}), dict):
            raise InvalidInputError(f"Configuration section '{section}' must be a JSON object")


def map_config_to_kwargs(raw_config: dict) -> Tuple[SimulationConfig, Dict[str, float]]:
    """
    Map the JSON structure onto SimulationConfig and the run parameters.

    Expected sections: "simulation", "controller", "sensor", "physics".
    """
    check_layout(raw_config)
    sim = dict(raw_config.get("simulation", {}))
    run_params = {
        key: require_positive(key, sim.pop(key, default)) for key, default in RUN_DEFAULTS.items()
    }

    try:
        config = SimulationConfig(
            pid=PIDParameters(**raw_config.get("controller", {})),
            sensor=SensorConfig(**raw_config.get("sensor", {})),
            physics=PhysicsConfig(**raw_config.get("physics", {})),
            **sim
        )
    except TypeError as e:
        raise InvalidInputError(f"Unknown configuration key: {e}") from e
    return config, run_params


def apply_overrides(raw_config: dict, args: argparse.Namespace) -> dict:
    """Overlay command-line values onto the loaded JSON configuration."""
    overrides = {
        ("simulation", "duration"): args.duration,
        ("simulation", "dt"): args.dt,
        ("simulation", "setpoint"): args.setpoint,
        ("simulation", "initial_position"): args.initial_position,
        ("simulation", "hold_ball"): True if args.hold_ball else None,
        ("controller", "kp"): args.kp,
        ("controller", "ki"): args.ki,
        ("controller", "kd"): args.kd,
        ("sensor", "noise_standard_deviation"): args.noise,
        ("sensor", "seed"): args.seed,
        ("physics", "gravity"): args.gravity,
    }
    merged = {
        section: dict(values) if isinstance(values, dict) else values
        for section, values in raw_config.items()
    }
    for (section, key), value in overrides.items():
        if value is not None:
            merged.setdefault(section, {})[key] = value
    return merged


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Levitated ball - PID control simulation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON configuration file (default: config/default_config.json)")
    parser.add_argument("--duration", type=float, default=None,
                        help="Simulated duration in seconds")
    parser.add_argument("--dt", type=float, default=None,
                        help="Controller sampling time in seconds")
    parser.add_argument("--setpoint", type=float, default=None, help="Target position [m]")
    parser.add_argument("--initial-position", type=float, default=None,
                        help="Initial ball position [m]")
    parser.add_argument("--hold-ball", action="store_true", help="Keep the ball fixed")
    parser.add_argument("--kp", type=float, default=None, help="Proportional gain")
    parser.add_argument("--ki", type=float, default=None, help="Integral gain")
    parser.add_argument("--kd", type=float, default=None, help="Derivative gain")
    parser.add_argument("--noise", type=float, default=None, help="Sensor noise sigma [m]")
    parser.add_argument("--gravity", type=float, default=None,
                        help="Gravitational acceleration [m/s^2]")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for deterministic sensor noise")
    parser.add_argument("--output", type=Path, default=None,
                        help="Write the sample history to this CSV file")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(getattr(logging, args.log_level), args.log_file)

    try:
        raw_config = apply_overrides(load_config(args.config), args)
        config, run_params = map_config_to_kwargs(raw_config)

        sim = SimulationLoop(config)
        logger.info(
            "Running %.2f s at dt=%g s (kp=%g, ki=%g, kd=%g, setpoint=%g m)",
            run_params['duration'], run_params['dt'],
            config.pid.kp, config.pid.ki, config.pid.kd, config.setpoint
        )
        sim.run(run_params['duration'], run_params['dt'])
    except InvalidInputError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except SimulationError as e:
        logger.error("Simulation failed: %s", e)
        return 1

    metrics = PerformanceAnalyzer().analyze(sim.history())

    print("\n" + "=" * 40)
    print(" PERFORMANCE SUMMARY")
    print("=" * 40)
    print(f"Final position:     {sim.ball_state.position:.4f} m")
    print(f"RMS error:          {metrics.rms_error:.4f} m")
    print(f"Steady-state error: {metrics.steady_state_error:.4f} m")
    print(f"Overshoot:          {metrics.overshoot_percent:.1f} %")
    if metrics.settled:
        print(f"Settling time:      {metrics.settling_time:.2f} s")
    else:
        print("Settling time:      not settled")
    print(f"Peak control:       {metrics.peak_control:.2f} N")
    print("=" * 40 + "\n")

    if args.output is not None:
        sim.history_frame().to_csv(args.output, index=False)
        logger.info("History written to %s", args.output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
