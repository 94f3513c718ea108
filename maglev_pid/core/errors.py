"""
Error taxonomy for the levitated-ball simulation core.

Two failure classes are distinguished:

- InvalidInputError: the caller supplied something the core cannot act on
  (non-positive or non-finite time step, NaN/inf gains or setpoint, an
  inconsistent configuration). Raised synchronously, before any state is
  touched, so the caller may simply retry with corrected input.
- NumericInstabilityError: inputs were valid but the integrated state came
  out non-finite. This points at a modeling/regularization problem and is
  surfaced to the host instead of being clamped away.

Neither is fatal; the host decides whether to reset or stop stepping.
"""

import math
import numbers
from typing import Optional


class SimulationError(Exception):
    """Base class for all simulation core errors."""


class InvalidInputError(SimulationError, ValueError):
    """Rejected input. Simulation state is left unchanged."""


class NumericInstabilityError(SimulationError, ArithmeticError):
    """Integrated state contains NaN or inf despite valid inputs."""


def _to_float(name: str, value) -> float:
    if isinstance(value, (str, bytes)):
        raise InvalidInputError(f"{name} must be a real number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise InvalidInputError(f"{name} must be a real number, got {value!r}") from e


def require_finite(name: str, value: float) -> float:
    """Return ``value`` as float, raising InvalidInputError if NaN/inf."""
    value = _to_float(name, value)
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value}")
    return value


def require_positive(name: str, value: float) -> float:
    """Return ``value`` as float, raising InvalidInputError unless finite and > 0."""
    value = require_finite(name, value)
    if value <= 0.0:
        raise InvalidInputError(f"{name} must be > 0, got {value}")
    return value


def require_non_negative(name: str, value: float) -> float:
    value = require_finite(name, value)
    if value < 0.0:
        raise InvalidInputError(f"{name} must be >= 0, got {value}")
    return value


def optional_limit(name: str, value: Optional[float]) -> Optional[float]:
    """
    Validate an optional symmetric limit.

    ``None`` and ``inf`` both mean "unlimited" and are returned as ``None``.
    """
    if value is None:
        return None
    value = _to_float(name, value)
    if math.isnan(value):
        raise InvalidInputError(f"{name} must not be NaN")
    if math.isinf(value) and value > 0:
        return None
    if value <= 0.0:
        raise InvalidInputError(f"{name} must be > 0 or None, got {value}")
    return value


def require_positive_int(name: str, value: int) -> int:
    """Return ``value`` as int, raising InvalidInputError unless an integer >= 1."""
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise InvalidInputError(f"{name} must be >= 1, got {value}")
    return int(value)


def require_bool(name: str, value: bool) -> bool:
    """Return ``value`` if it is a bool, else raise InvalidInputError."""
    if not isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a bool, got {value!r}")
    return value
