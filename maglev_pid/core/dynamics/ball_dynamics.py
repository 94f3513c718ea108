"""
Vertical Ball Dynamics with an Idealized Attractor

Equation of motion (positive = up):

    m * x'' = F_att(x, s) - c * x' - m * g

where s is the attractor strength commanded by the controller, c an optional
linear drag coefficient and g the gravitational acceleration.

Integration:
-----------
Semi-implicit (symplectic) Euler, velocity before position:

    v[k+1] = v[k] + a[k] * h
    x[k+1] = x[k] + v[k+1] * h

Plain explicit Euler gains energy every step and drifts over long real-time
sessions; updating velocity first keeps the energy error bounded. Outer steps
longer than ``max_substep`` (e.g. a stalled render frame) are split into
N = ceil(dt / max_substep) equal substeps. The applied force is held constant
over the outer step; only the drag term is re-evaluated per substep.

Attractor:
---------
The attractor is a point without extent located at ``attractor_position``.
The ball may pass through it; there is no collision response and the force
sign follows the commanded strength only. The distance law must be
regularized at d -> 0:

    "softened" : F = k * s / (L² + d²)         (default, L = softening_length)
    "floored"  : F = k * s / max(|d|, d_min)²
    "uniform"  : F = k * s

With L = 1 m the softened law reduces to the plain 1/(1 + d²) attenuation.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Union

from maglev_pid.core.errors import (
    InvalidInputError,
    NumericInstabilityError,
    optional_limit,
    require_finite,
    require_non_negative,
    require_positive,
)

logger = logging.getLogger(__name__)

ForceProfile = Callable[[float, float], float]

FORCE_PROFILES = ('softened', 'floored', 'uniform')


@dataclass(frozen=True)
class BallState:
    """Kinematic state of the ball."""
    position: float = 0.5  # [m], vertical axis, up positive
    velocity: float = 0.0  # [m/s]

    def is_finite(self) -> bool:
        return math.isfinite(self.position) and math.isfinite(self.velocity)


@dataclass
class PhysicsConfig:
    """Configuration for ball dynamics and attractor."""

    # Plant
    gravity: float = 9.81            # Gravitational acceleration [m/s²], acts downward
    mass: float = 1.0                # Ball mass [kg]
    damping: float = 0.0             # Linear drag [N·s/m]

    # Attractor
    attractor_position: float = 1.0  # [m]
    force_scale: float = 1.0         # Multiplier on the distance law [-]
    force_profile: Union[str, ForceProfile] = 'softened'
    softening_length: float = 1.0    # L in the softened law [m]
    min_distance: float = 0.05       # d_min in the floored law [m]
    max_force: Optional[float] = None       # Strength saturation [N], None = unlimited
    max_force_rate: Optional[float] = None  # Strength slew limit [N/s], None = unlimited

    # Integration
    max_substep: float = 0.005       # Longest single integration step [s]

    def __post_init__(self):
        self.gravity = require_finite('gravity', self.gravity)
        self.mass = require_positive('mass', self.mass)
        self.damping = require_non_negative('damping', self.damping)
        self.attractor_position = require_finite('attractor_position', self.attractor_position)
        self.force_scale = require_finite('force_scale', self.force_scale)
        self.softening_length = require_positive('softening_length', self.softening_length)
        self.min_distance = require_positive('min_distance', self.min_distance)
        self.max_force = optional_limit('max_force', self.max_force)
        self.max_force_rate = optional_limit('max_force_rate', self.max_force_rate)
        self.max_substep = require_positive('max_substep', self.max_substep)
        if not callable(self.force_profile) and self.force_profile not in FORCE_PROFILES:
            raise InvalidInputError(
                f"force_profile must be one of {FORCE_PROFILES} or a callable, "
                f"got {self.force_profile!r}"
            )


class Attractor:
    """
    Force actuator pulling on the ball.

    The controller output is the commanded strength. Before it acts on the
    ball it is slew-rate limited (max_force_rate) and saturated (max_force),
    the way a coil current cannot jump or grow without bound. The resulting
    strength is then attenuated by the configured distance law.
    """

    def __init__(self, config: PhysicsConfig):
        self.config = config
        self.strength: float = 0.0

    def limit(self, command: float, dt: float) -> float:
        """
        Apply slew-rate and saturation limits to a commanded strength.

        Pure: returns the strength that would result, without storing it.
        """
        command = require_finite('command', command)
        dt = require_positive('dt', dt)

        delta = command - self.strength
        if self.config.max_force_rate is not None:
            max_delta = self.config.max_force_rate * dt
            if abs(delta) > max_delta:
                delta = math.copysign(max_delta, delta)
        strength = self.strength + delta

        if self.config.max_force is not None:
            strength = min(max(strength, -self.config.max_force), self.config.max_force)
        return strength

    def force_at(self, position: float, strength: float) -> float:
        """Force [N] on a ball at ``position`` for the given strength."""
        cfg = self.config
        distance = position - cfg.attractor_position
        profile = cfg.force_profile

        if callable(profile):
            return float(profile(distance, strength))
        if profile == 'softened':
            length = cfg.softening_length
            return cfg.force_scale * strength / (length * length + distance * distance)
        if profile == 'floored':
            d = max(abs(distance), cfg.min_distance)
            return cfg.force_scale * strength / (d * d)
        return cfg.force_scale * strength

    def reset(self) -> None:
        self.strength = 0.0


class PhysicsIntegrator:
    """
    Advances the ball state under gravity, drag and an applied force.

    Usage:
    ------
    >>> integrator = PhysicsIntegrator(PhysicsConfig())
    >>> state = integrator.advance(BallState(0.5, 0.0), net_force=9.81, mass=1.0, dt=0.01)
    """

    def __init__(self, config: PhysicsConfig):
        self.config = config

    def substep_count(self, dt: float) -> int:
        """Number of equal substeps used for an outer step of length dt."""
        # Guard against 2*h/h evaluating to 2.0000000000000004
        return max(1, math.ceil(dt / self.config.max_substep - 1e-9))

    def advance(self, state: BallState, net_force: float, mass: float, dt: float) -> BallState:
        """
        Integrate one outer step.

        Parameters
        ----------
        state : BallState
            State at the start of the step
        net_force : float
            Applied non-gravitational force [N], held constant over dt
        mass : float
            Ball mass [kg]
        dt : float
            Outer step length [s], must be > 0

        Returns
        -------
        BallState
            State at the end of the step

        Raises
        ------
        InvalidInputError
            Non-positive dt or mass, non-finite force or state
        NumericInstabilityError
            The integrated state is not finite
        """
        dt = require_positive('dt', dt)
        mass = require_positive('mass', mass)
        net_force = require_finite('net_force', net_force)
        if not state.is_finite():
            raise InvalidInputError(f"Initial state must be finite, got {state}")

        n = self.substep_count(dt)
        h = dt / n
        if n > 1:
            logger.debug("Splitting dt=%.6f s into %d substeps of %.6f s", dt, n, h)

        g = self.config.gravity
        c = self.config.damping
        x = state.position
        v = state.velocity
        for _ in range(n):
            a = (net_force - c * v) / mass - g
            v = v + a * h
            x = x + v * h

        new_state = BallState(position=x, velocity=v)
        if not new_state.is_finite():
            raise NumericInstabilityError(
                f"Non-finite ball state after dt={dt} (force={net_force}, "
                f"start={state}): position={x}, velocity={v}"
            )
        return new_state

    def total_energy(self, state: BallState, mass: Optional[float] = None) -> float:
        """Kinetic plus gravitational potential energy [J]."""
        m = self.config.mass if mass is None else mass
        return 0.5 * m * state.velocity ** 2 + m * self.config.gravity * state.position
