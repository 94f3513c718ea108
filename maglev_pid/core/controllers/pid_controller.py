"""
PID Position Controller for the Levitated Ball

Single-axis PID law driving the attractor strength from the measured ball
position.

Control Law:
-----------
e[k] = r[k] - y[k]

I[k] = clip(I[k-1] + e[k]*dt, -I_max, +I_max)

D[k] = -(y[k] - y[k-1]) / dt        (derivative on measurement, default)
D[k] =  (e[k] - e[k-1]) / dt        (derivative on error)

u[k] = Kp*e[k] + Ki*I[k] + Kd*D[k]  (optionally clipped to ±u_max)

Implementation Notes:
--------------------
1. **Derivative on measurement**: For a constant setpoint both forms are
   identical; on a setpoint step the error form produces a one-sample spike
   ("derivative kick"). The measurement form is the default and the error
   form is selectable through ``PIDParameters.derivative_on_measurement``.

2. **Anti-windup**: The integral accumulator (units m·s) is clamped to
   ±integral_limit. The default bound of 100 m·s is far outside anything a
   stable levitation reaches but keeps the term finite when the ball is
   held or has fallen away from the attractor for a long time.

3. **Small time steps**: The derivative is not evaluated for dt below
   DT_EPSILON; the previous derivative is reused instead of dividing by a
   vanishing interval. dt <= 0 is rejected outright.

4. **First sample**: There is no previous sample after construction or
   reset, so the derivative contribution of the first update is zero.
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

import numpy as np

from maglev_pid.core.errors import (
    InvalidInputError,
    optional_limit,
    require_bool,
    require_finite,
    require_positive,
)

DT_EPSILON = 1e-9  # s


@dataclass
class PIDParameters:
    """PID gains and limits. Hot-swappable between steps."""
    kp: float = 30.0   # Proportional gain [N/m]
    ki: float = 10.0   # Integral gain [N/(m·s)]
    kd: float = 10.0   # Derivative gain [N·s/m]
    integral_limit: Optional[float] = 100.0   # |I| bound [m·s], None = unbounded
    output_limit: Optional[float] = None      # |u| bound [N], None = unclamped
    derivative_on_measurement: bool = True

    def __post_init__(self):
        self.kp = require_finite('kp', self.kp)
        self.ki = require_finite('ki', self.ki)
        self.kd = require_finite('kd', self.kd)
        self.integral_limit = optional_limit('integral_limit', self.integral_limit)
        self.output_limit = optional_limit('output_limit', self.output_limit)
        self.derivative_on_measurement = require_bool(
            'derivative_on_measurement', self.derivative_on_measurement
        )


@dataclass
class PIDState:
    """Container for controller internal state."""
    integral_accumulator: float = 0.0
    previous_error: float = 0.0
    previous_measurement: float = 0.0
    previous_derivative: float = 0.0
    initialized: bool = False


class PIDController:
    """
    PID controller for one levitated ball.

    All inputs are passed explicitly; the controller reads no globals. Use one
    instance per simulated ball.

    Usage:
    ------
    >>> pid = PIDController(PIDParameters(kp=30.0, ki=10.0, kd=10.0))
    >>> u = pid.update(measurement=0.48, setpoint=0.5, dt=0.01)
    """

    def __init__(self, parameters: Optional[PIDParameters] = None):
        """
        Initialize the controller.

        Parameters
        ----------
        parameters : Optional[PIDParameters]
            Gains and limits; defaults to PIDParameters()
        """
        self.parameters: PIDParameters = replace(parameters) if parameters else PIDParameters()
        self.state: PIDState = PIDState()
        self.last_terms: Dict[str, float] = {}

    def set_parameters(self, parameters: PIDParameters) -> None:
        """Swap gains/limits without touching the integral or history."""
        if not isinstance(parameters, PIDParameters):
            raise InvalidInputError(
                f"parameters must be PIDParameters, got {type(parameters).__name__}"
            )
        self.parameters = replace(parameters)

    def update(self, measurement: float, setpoint: float, dt: float) -> float:
        """
        Compute the control output for one sample.

        Parameters
        ----------
        measurement : float
            Measured ball position [m]
        setpoint : float
            Target ball position [m]
        dt : float
            Time since the previous sample [s], must be > 0

        Returns
        -------
        float
            Commanded attractor strength [N]

        Raises
        ------
        InvalidInputError
            For dt <= 0 or non-finite inputs. State is left untouched.
        """
        dt = require_positive('dt', dt)
        measurement = require_finite('measurement', measurement)
        setpoint = require_finite('setpoint', setpoint)

        params = self.parameters
        prev = self.state

        error = setpoint - measurement

        integral = prev.integral_accumulator + error * dt
        if params.integral_limit is not None:
            integral = float(np.clip(integral, -params.integral_limit, params.integral_limit))

        if not prev.initialized:
            derivative = 0.0
        elif dt < DT_EPSILON:
            derivative = prev.previous_derivative
        elif params.derivative_on_measurement:
            derivative = -(measurement - prev.previous_measurement) / dt
        else:
            derivative = (error - prev.previous_error) / dt

        u_p = params.kp * error
        u_i = params.ki * integral
        u_d = params.kd * derivative
        output = u_p + u_i + u_d

        if params.output_limit is not None:
            output = float(np.clip(output, -params.output_limit, params.output_limit))

        self.state = PIDState(
            integral_accumulator=integral,
            previous_error=error,
            previous_measurement=measurement,
            previous_derivative=derivative,
            initialized=True,
        )
        self.last_terms = {
            'error': error,
            'u_p': u_p,
            'u_i': u_i,
            'u_d': u_d,
            'output': output,
        }
        return output

    def reset(self) -> None:
        """Zero the integral and derivative history. Gains are kept."""
        self.state = PIDState()
        self.last_terms = {}

    def get_state(self) -> PIDState:
        """Copy of the current internal state."""
        return replace(self.state)

    def restore_state(self, state: PIDState) -> None:
        """Put back a state previously obtained from get_state()."""
        self.state = replace(state)
