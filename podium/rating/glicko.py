"""Glicko-2 rating math for multi-competitor races.

A race of N competitors is decomposed into the N*(N-1)/2 pairwise
"virtual matches" implied by the finishing ranks, and every competitor
is rated against all the others as one Glicko-2 rating period.

All functions here are pure: they take plain numbers / dataclasses and
never touch the database, so they can be tested in isolation.

Reference: Glickman, "Example of the Glicko-2 system" (2013).
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

GLICKO2_SCALE = 173.7178  # Glicko <-> Glicko-2 scale factor
BASE_RATING = 1500.0
DEFAULT_RD = 350.0
DEFAULT_VOLATILITY = 0.06
DEFAULT_TAU = 0.5

MIN_RD = 30.0
MAX_RD = 350.0
MIN_VOLATILITY = 1e-4
MAX_VOLATILITY = 1.0

CONVERGENCE_TOLERANCE = 1e-6
MAX_ITERATIONS = 100


@dataclass(frozen=True)
class Rating:
    """A rating triple on the public (Glicko) scale."""

    rating: float = BASE_RATING
    rd: float = DEFAULT_RD
    volatility: float = DEFAULT_VOLATILITY

    @property
    def mu(self) -> float:
        return (self.rating - BASE_RATING) / GLICKO2_SCALE

    @property
    def phi(self) -> float:
        return self.rd / GLICKO2_SCALE

    @property
    def conservative_score(self) -> float:
        return self.rating - 2 * self.rd


@dataclass(frozen=True)
class Finish:
    """One competitor's finishing rank in a race (ties share a rank)."""

    competitor_id: str
    rank: int


def clamp_rd(rd: float) -> float:
    return min(max(rd, MIN_RD), MAX_RD)


def g(phi: float) -> float:
    """g(φ) = 1 / √(1 + 3φ²/π²). Damps the impact of uncertain opponents."""
    return 1.0 / math.sqrt(1.0 + 3.0 * phi * phi / (math.pi * math.pi))


def expected_score(mu: float, mu_j: float, phi_j: float) -> float:
    """E(μ, μⱼ, φⱼ) = 1 / (1 + exp(-g(φⱼ)(μ - μⱼ)))."""
    return 1.0 / (1.0 + math.exp(-g(phi_j) * (mu - mu_j)))


def pairwise_score(rank: int, opponent_rank: int) -> float:
    """Virtual match score: lower rank wins, equal ranks draw."""
    if rank < opponent_rank:
        return 1.0
    if rank > opponent_rank:
        return 0.0
    return 0.5


def solve_volatility(
    delta: float,
    phi: float,
    v: float,
    sigma: float,
    tau: float = DEFAULT_TAU,
    tolerance: float = CONVERGENCE_TOLERANCE,
    max_iterations: int = MAX_ITERATIONS,
) -> float:
    """Find the new volatility σ' with the Illinois variant of regula falsi.

    Step 5 of the Glicko-2 algorithm. Iterations are bounded; on
    non-convergence the best bracket estimate is returned.
    """
    a = math.log(sigma * sigma)
    phi2 = phi * phi
    delta2 = delta * delta
    tau2 = tau * tau

    def f(x: float) -> float:
        ex = math.exp(x)
        return (ex * (delta2 - phi2 - v - ex)) / (2.0 * (phi2 + v + ex) ** 2) - (x - a) / tau2

    big_a = a
    if delta2 > phi2 + v:
        big_b = math.log(delta2 - phi2 - v)
    else:
        k = 1
        while f(a - k * tau) < 0 and k < max_iterations:
            k += 1
        big_b = a - k * tau

    f_a = f(big_a)
    f_b = f(big_b)

    iterations = 0
    while abs(big_b - big_a) > tolerance:
        if iterations >= max_iterations:
            logger.warning(
                f"Volatility solve did not converge after {max_iterations} iterations "
                f"(delta={delta:.4f}, phi={phi:.4f}, v={v:.4f})"
            )
            break
        c = big_a + (big_a - big_b) * f_a / (f_b - f_a)
        f_c = f(c)
        if f_c * f_b <= 0:
            big_a, f_a = big_b, f_b
        else:
            f_a = f_a / 2.0
        big_b, f_b = c, f_c
        iterations += 1

    new_sigma = math.exp(big_a / 2.0)
    return min(max(new_sigma, MIN_VOLATILITY), MAX_VOLATILITY)


def update_rating(
    player: Rating,
    opponents: Sequence[tuple[Rating, float]],
    tau: float = DEFAULT_TAU,
) -> Rating:
    """Rate one competitor against (opponent, score) pairs from one period.

    With no opponents only the deviation grows (Glicko-2 step 6 alone).
    """
    mu, phi, sigma = player.mu, player.phi, player.volatility

    if not opponents:
        phi_star = math.sqrt(phi * phi + sigma * sigma)
        return Rating(player.rating, clamp_rd(phi_star * GLICKO2_SCALE), sigma)

    v_inv = 0.0
    score_sum = 0.0
    for opp, score in opponents:
        g_j = g(opp.phi)
        e_j = expected_score(mu, opp.mu, opp.phi)
        v_inv += g_j * g_j * e_j * (1.0 - e_j)
        score_sum += g_j * (score - e_j)

    v = 1.0 / v_inv
    delta = v * score_sum

    new_sigma = solve_volatility(delta, phi, v, sigma, tau)
    phi_star = math.sqrt(phi * phi + new_sigma * new_sigma)
    new_phi = 1.0 / math.sqrt(1.0 / (phi_star * phi_star) + 1.0 / v)
    new_mu = mu + new_phi * new_phi * score_sum

    new_rating = GLICKO2_SCALE * new_mu + BASE_RATING
    new_rd = clamp_rd(GLICKO2_SCALE * new_phi)

    if not (math.isfinite(new_rating) and math.isfinite(new_rd) and math.isfinite(new_sigma)):
        raise ValueError(f"Non-finite rating update for {player}: {new_rating}, {new_rd}, {new_sigma}")

    return Rating(new_rating, new_rd, new_sigma)


def rate_race(
    ratings: Mapping[str, Rating],
    finishes: Iterable[Finish],
    tau: float = DEFAULT_TAU,
) -> dict[str, Rating]:
    """Rate every finisher of a race from the same pre-race snapshot.

    Updates are not chained: competitor B's update sees A's pre-race
    rating even if A was processed first.
    """
    finishes = list(finishes)
    if len(finishes) < 2:
        raise ValueError("A race needs at least two competitors")

    missing = [f.competitor_id for f in finishes if f.competitor_id not in ratings]
    if missing:
        raise KeyError(f"No rating for competitors: {', '.join(sorted(missing))}")

    updated = {}
    for finish in finishes:
        opponents = [
            (ratings[other.competitor_id], pairwise_score(finish.rank, other.rank))
            for other in finishes
            if other.competitor_id != finish.competitor_id
        ]
        updated[finish.competitor_id] = update_rating(ratings[finish.competitor_id], opponents, tau)
    return updated
