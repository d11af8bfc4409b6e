"""Plackett-Luce podium probabilities estimated by Monte Carlo simulation.

Each competitor gets a strength α = exp(μ·g(φ)) on the Glicko-2 scale
(μ divided by g(φ) below the mean, see ``strength``).
A trial draws 1st place with probability proportional to α, removes the
winner, draws 2nd among the rest, then 3rd. Exact enumeration of podium
permutations blows up past ~15-20 competitors, so simulation is the
method, not a shortcut.

Trials are split into fixed-size chunks, each with its own child seed
from one ``SeedSequence``. Chunk results are plain counts, so they can
be summed in any order and the total is identical however many worker
threads ran them.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from podium.rating.glicko import Rating, g

logger = logging.getLogger(__name__)

DEFAULT_TRIALS = 50_000
CHUNK_SIZE = 5_000
PODIUM_PLACES = 3

MIN_ODD = 1.1
MAX_ODD = 50.0


@dataclass(frozen=True)
class PodiumProbabilities:
    """Simulated position probabilities for one competitor."""

    competitor_id: str
    strength: float
    win_probability: float  # closed-form softmax of strengths
    first: float
    second: float
    third: float

    def for_position(self, rank: int) -> float:
        return (self.first, self.second, self.third)[rank - 1]


def strength(rating: Rating) -> float:
    """α = exp(μ·g(φ)) at or above the mean, exp(μ/g(φ)) below it.

    g(φ) <= 1 shrinks μ toward 0, which for μ < 0 would make an
    uncertain competitor stronger than a settled one. Dividing below the
    mean keeps the ordering for every μ: higher rating and lower RD both
    increase α, and the two branches meet at μ = 0.
    """
    mu = rating.mu
    if mu < 0:
        return math.exp(mu / g(rating.phi))
    return math.exp(mu * g(rating.phi))


def win_probabilities(strengths: Sequence[float]) -> np.ndarray:
    """P(i wins) = α_i / Σα_j."""
    alphas = np.asarray(strengths, dtype=float)
    total = alphas.sum()
    if total <= 0:
        return np.zeros_like(alphas)
    return alphas / total


def _simulate_chunk(alphas: np.ndarray, trials: int, seed: np.random.SeedSequence) -> np.ndarray:
    """Run ``trials`` podium draws; return an (n, 3) array of position counts.

    All trials of the chunk advance together: at each place a uniform
    draw is mapped through every row's cumulative remaining weight, and
    the chosen competitor's weight is zeroed (without replacement).
    """
    rng = np.random.default_rng(seed)
    n = alphas.shape[0]
    places = min(PODIUM_PLACES, n)
    counts = np.zeros((n, PODIUM_PLACES), dtype=np.int64)
    weights = np.tile(alphas, (trials, 1))
    rows = np.arange(trials)

    for place in range(places):
        cumulative = np.cumsum(weights, axis=1)
        totals = cumulative[:, -1]
        u = rng.random(trials) * totals
        # first index whose cumulative weight exceeds u; never a removed item
        picked = (cumulative <= u[:, None]).sum(axis=1)
        picked = np.minimum(picked, n - 1)
        counts[:, place] += np.bincount(picked, minlength=n)
        weights[rows, picked] = 0.0

    return counts


def simulate_podium_counts(
    strengths: Sequence[float],
    trials: int = DEFAULT_TRIALS,
    seed: Optional[int] = None,
    workers: int = 1,
) -> np.ndarray:
    """Count how often each competitor lands 1st, 2nd and 3rd over ``trials``.

    With a fixed ``seed`` the result is byte-for-byte repeatable regardless
    of ``workers``.
    """
    alphas = np.asarray(strengths, dtype=float)
    n = alphas.shape[0]
    if n == 0 or trials <= 0:
        return np.zeros((n, PODIUM_PLACES), dtype=np.int64)

    chunk_sizes = [CHUNK_SIZE] * (trials // CHUNK_SIZE)
    if trials % CHUNK_SIZE:
        chunk_sizes.append(trials % CHUNK_SIZE)
    seeds = np.random.SeedSequence(seed).spawn(len(chunk_sizes))

    if workers <= 1 or len(chunk_sizes) == 1:
        partials = [_simulate_chunk(alphas, size, s) for size, s in zip(chunk_sizes, seeds)]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            partials = list(pool.map(lambda args: _simulate_chunk(alphas, *args), zip(chunk_sizes, seeds)))

    return np.sum(partials, axis=0)


def probability_to_odd(probability: float) -> float:
    """Decimal odd 1/P clamped to [1.1, 50.0]; P == 0 gets the ceiling."""
    if probability <= 0:
        return MAX_ODD
    return round(min(max(1.0 / probability, MIN_ODD), MAX_ODD), 2)


def podium_probabilities(
    ratings: dict[str, Rating],
    trials: int = DEFAULT_TRIALS,
    seed: Optional[int] = None,
    workers: int = 1,
) -> list[PodiumProbabilities]:
    """Simulated podium probabilities for every competitor in ``ratings``.

    Competitors are processed in id order so a seeded run doesn't depend
    on dict ordering.
    """
    ids = sorted(ratings)
    if not ids:
        return []
    alphas = [strength(ratings[cid]) for cid in ids]
    wins = win_probabilities(alphas)
    counts = simulate_podium_counts(alphas, trials=trials, seed=seed, workers=workers)
    freqs = counts / float(trials)
    return [
        PodiumProbabilities(
            competitor_id=cid,
            strength=alphas[i],
            win_probability=float(wins[i]),
            first=float(freqs[i, 0]),
            second=float(freqs[i, 1]),
            third=float(freqs[i, 2]),
        )
        for i, cid in enumerate(ids)
    ]
