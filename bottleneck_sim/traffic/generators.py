"""Duration generators for traffic sources.

This module provides functions returning zero-argument callables, used by the
On/Off source for its on and off period lengths. Random variants draw from a
NumPy generator supplied by the caller so that each source owns a reproducible
stream.
"""

from typing import Callable, Union

import numpy as np

DurationLike = Union[float, Callable[[], float]]


def constant_duration(seconds: float) -> Callable[[], float]:
    """Generate a fixed duration.

    Args:
        seconds: Duration in seconds.

    Returns:
        Function that always returns the duration.
    """
    if seconds < 0:
        raise ValueError(f"Duration cannot be negative, got {seconds}")
    return lambda: seconds


def uniform_duration(
    low: float, high: float, rng: np.random.Generator
) -> Callable[[], float]:
    """Generate durations uniformly distributed between two bounds.

    Args:
        low: Minimum duration in seconds.
        high: Maximum duration in seconds.
        rng: Generator to draw from.

    Returns:
        Function that returns a uniformly distributed duration.
    """
    if low < 0 or high < low:
        raise ValueError(f"Invalid duration bounds [{low}, {high}]")
    return lambda: float(rng.uniform(low, high))


def exponential_duration(mean: float, rng: np.random.Generator) -> Callable[[], float]:
    """Generate exponentially distributed durations.

    Args:
        mean: Mean duration in seconds.
        rng: Generator to draw from.

    Returns:
        Function that returns an exponentially distributed duration.
    """
    if mean <= 0:
        raise ValueError(f"Mean duration must be positive, got {mean}")
    return lambda: float(rng.exponential(mean))


def pareto_duration(
    mean: float, rng: np.random.Generator, alpha: float = 1.5
) -> Callable[[], float]:
    """Generate Pareto (heavy-tailed) durations.

    Args:
        mean: Mean duration in seconds.
        rng: Generator to draw from.
        alpha: Shape parameter for Pareto distribution (default: 1.5).

    Returns:
        Function that returns a Pareto distributed duration.
    """
    if alpha <= 1:
        raise ValueError("Pareto shape must exceed 1 for the mean to exist")
    scale = mean * (alpha - 1) / alpha
    return lambda: float(scale * (1 + rng.pareto(alpha)))


def as_duration(value: DurationLike) -> Callable[[], float]:
    """Wrap a plain number into a constant duration generator."""
    if callable(value):
        return value
    return constant_duration(float(value))
