import math
from typing import Optional
from typing import Sequence

import numpy as np
from scipy.optimize import brentq
from scipy.stats import binom

# Survival probabilities of N independent shards, at most M of which may be
# lost before the data unit can no longer be reconstructed.


class ReliabilityInputError(ValueError):
    """The probability vector is shorter than the declared shard count"""


def reliability(
    probabilities: Sequence[float], redundancy: int, total: Optional[int] = None
) -> float:
    """Exact P(at most `redundancy` of the shards are lost)

    Dynamic program over T[i][j] = P(exactly j of the first i shards are
    lost), for j in [0, redundancy]. We only ever need the previous row so
    the table is a single rolling numpy vector:

        T[i][0] = T[i-1][0] * p[i-1]
        T[i][j] = T[i-1][j] * p[i-1] + T[i-1][j-1] * (1 - p[i-1])

    Cells with j > i stay zero since we start from T[0] = [1, 0, ..., 0].
    The result is sum(T[N]). O(N * M) time, O(M) space.
    """
    if total is None:
        total = len(probabilities)
    if len(probabilities) < total:
        raise ReliabilityInputError(
            f"Got {len(probabilities)} shard probabilities, expected {total}"
        )
    if redundancy < 0:
        return 0.0

    row = np.zeros(redundancy + 1, dtype=np.float64)
    row[0] = 1.0
    for p in probabilities[:total]:
        nxt = row * p
        nxt[1:] += row[:-1] * (1.0 - p)
        row = nxt
    return float(row.sum())


def binomial_reliability(probability: float, total: int, redundancy: int) -> float:
    """Closed form of `reliability` when every shard survives with the
    same probability: the number of losses is Binomial(total, 1 - p)"""
    if redundancy >= total:
        return 1.0
    return float(binom.cdf(redundancy, total, 1.0 - probability))


def required_uniform_reliability(total: int, redundancy: int, target: float) -> float:
    """Smallest per shard survival probability that meets `target` if every
    shard were placed on an equally reliable slot.

    Useful to explain an infeasible placement: if the pool has no slots
    near this value no scheme can succeed.
    """
    if target <= 0 or redundancy >= total:
        return 0.0
    if target >= 1:
        return 1.0

    def gap(p):
        return binomial_reliability(p, total, redundancy) - target

    # gap(0) = -target < 0 and gap(1) = 1 - target > 0, monotone in between
    return float(brentq(gap, 0.0, 1.0, xtol=1e-9))


def nines(value: float) -> float:
    """Convert a reliability to "nines" (e.g., 0.999 -> 3.0 nines)."""
    if value >= 1.0:
        return float("inf")
    if value <= 0.0:
        return 0.0
    return -math.log10(1.0 - value)
