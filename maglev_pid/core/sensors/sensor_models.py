"""
Sensor Models for the Levitated Ball

This module implements the position sensor that closes the levitation loop.
The only non-ideal effect modeled is additive white Gaussian noise; there is
no bias, drift, quantization or latency.

Noise is drawn from an explicitly owned random number generator instead of a
process-wide one. Passing a seed (or an existing ``numpy.random.Generator``)
makes measurement sequences reproducible for debugging and tests; leaving it
out seeds from the operating system.
"""

import numbers
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from maglev_pid.core.errors import InvalidInputError, require_finite, require_non_negative


SeedLike = Union[None, int, np.random.Generator]


@dataclass
class SensorConfig:
    """Configuration for the position sensor."""
    noise_standard_deviation: float = 0.001  # Noise σ [m]
    seed: Optional[int] = None               # None = non-deterministic

    def __post_init__(self):
        self.noise_standard_deviation = require_non_negative(
            'noise_standard_deviation', self.noise_standard_deviation
        )
        if self.seed is not None:
            if isinstance(self.seed, bool) or not isinstance(self.seed, numbers.Integral) \
                    or self.seed < 0:
                raise InvalidInputError(
                    f"seed must be a non-negative integer or None, got {self.seed!r}"
                )
            self.seed = int(self.seed)


class RandomNoiseSource:
    """
    Zero-mean normal noise generator.

    Parameters
    ----------
    standard_deviation : float
        σ of the produced samples (default 1.0, i.e. unit normal)
    seed : int, np.random.Generator or None
        Seed for a fresh generator, an existing generator to draw from, or
        None for an OS-seeded generator
    """

    def __init__(self, standard_deviation: float = 1.0, seed: SeedLike = None):
        self.standard_deviation = require_non_negative('standard_deviation', standard_deviation)
        self.rng = self._make_rng(seed)

    @staticmethod
    def _make_rng(seed: SeedLike) -> np.random.Generator:
        if isinstance(seed, np.random.Generator):
            return seed
        return np.random.default_rng(seed)

    def sample(self) -> float:
        """Draw one sample from N(0, standard_deviation²)."""
        return float(self.rng.normal(0.0, self.standard_deviation))

    def reseed(self, seed: SeedLike = None) -> None:
        """Replace the generator, e.g. to replay a run after reset."""
        self.rng = self._make_rng(seed)


class PositionSensor:
    """
    Noisy measurement of the true ball position.

    measured = true_position + n * noise_standard_deviation,   n ~ N(0, 1)

    The noise source is expected to be unit normal so that σ is applied once.
    With σ == 0 the true position is returned unchanged and no sample is
    drawn, which keeps noiseless runs bit-exact.
    """

    def __init__(
        self,
        config: Optional[SensorConfig] = None,
        noise_source: Optional[RandomNoiseSource] = None
    ):
        config = config if config is not None else SensorConfig()
        self.noise_standard_deviation: float = config.noise_standard_deviation
        if noise_source is not None:
            # Seed of an injected source is unknown
            self.seed: Optional[int] = None
            self.noise_source = noise_source
        else:
            self.seed = config.seed
            self.noise_source = RandomNoiseSource(1.0, config.seed)

    def measure(self, true_position: float) -> float:
        """
        Measure the ball position.

        Parameters
        ----------
        true_position : float
            True ball position [m]

        Returns
        -------
        float
            Measured position [m]
        """
        true_position = require_finite('true_position', true_position)
        if self.noise_standard_deviation == 0.0:
            return true_position
        return true_position + self.noise_source.sample() * self.noise_standard_deviation

    def set_noise(self, noise_standard_deviation: float) -> None:
        """Hot-update σ without touching the generator state."""
        self.noise_standard_deviation = require_non_negative(
            'noise_standard_deviation', noise_standard_deviation
        )

    def configure(self, config: SensorConfig) -> None:
        """
        Apply a new SensorConfig.

        The generator is reseeded only when a different seed is given, so a
        hot change of sigma keeps the current noise stream.
        """
        self.set_noise(config.noise_standard_deviation)
        if config.seed is not None and config.seed != self.seed:
            self.noise_source.reseed(config.seed)
            self.seed = config.seed
