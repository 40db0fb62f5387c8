"""Spawn placement for new stars.

Stars are spread uniformly over concentric spherical shells. Every
`SPAWN_STARS_PER_SHELL` stars the shell moves outward by
`SPAWN_SHELL_THICKNESS`, which keeps the visual density roughly constant as
the population grows.
"""
import logging
import math
import random
from typing import Optional, Tuple

from sqlmodel import Session

from .constants import (
    SPAWN_COORD_DECIMALS,
    SPAWN_INNER_RADIUS,
    SPAWN_MAX_ATTEMPTS,
    SPAWN_SHELL_THICKNESS,
    SPAWN_STARS_PER_SHELL,
)
from .db import find_star_at, get_star_count

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float, float]


def shell_bounds(current_count: int) -> Tuple[float, float]:
    """Inner and outer radius of the shell used when `current_count` stars exist."""
    shell = max(int(current_count), 0) // SPAWN_STARS_PER_SHELL
    min_r = SPAWN_INNER_RADIUS + shell * SPAWN_SHELL_THICKNESS
    return float(min_r), float(min_r + SPAWN_SHELL_THICKNESS)


def spawn_coordinate(current_count: int, rng: random.Random) -> Coordinate:
    """Pick a point uniformly in the current shell, rounded to one decimal.

    Direction uses inverse-transform sampling (theta = 2*pi*U1,
    phi = acos(2*U2 - 1)) so points are uniform over the sphere.
    """
    min_r, max_r = shell_bounds(current_count)
    r = rng.uniform(min_r, max_r)
    theta = 2 * math.pi * rng.random()
    phi = math.acos(2 * rng.random() - 1)

    x = r * math.sin(phi) * math.cos(theta)
    y = r * math.sin(phi) * math.sin(theta)
    z = r * math.cos(phi)
    return (
        round(x, SPAWN_COORD_DECIMALS),
        round(y, SPAWN_COORD_DECIMALS),
        round(z, SPAWN_COORD_DECIMALS),
    )


def allocate_spawn_position(session: Session, rng: Optional[random.Random] = None,
                            max_attempts: int = SPAWN_MAX_ATTEMPTS) -> Coordinate:
    """Find a free coordinate for a new star.

    Retries on an exact collision with an existing star. After `max_attempts`
    collisions the last candidate is returned anyway; creation is never
    blocked by placement.
    """
    rng = rng or random.Random()
    count = get_star_count(session)
    candidate = spawn_coordinate(count, rng)
    for attempt in range(1, max_attempts + 1):
        if find_star_at(session, *candidate) is None:
            return candidate
        logger.debug("Spawn collision at %s (attempt %d/%d)", candidate, attempt, max_attempts)
        if attempt < max_attempts:
            candidate = spawn_coordinate(count, rng)
    logger.warning("No free spawn coordinate after %d attempts; accepting %s", max_attempts, candidate)
    return candidate
