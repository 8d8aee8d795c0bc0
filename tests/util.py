import itertools
from collections import Counter
from typing import Dict
from typing import Mapping
from typing import Sequence

from erasure_placement.interface import NodeId
from erasure_placement.interface import NodeStats
from erasure_placement.interface import PlacementResult

# Shard size of the reference scenario: 123 bytes split over K=6
SCENARIO_DATA_LENGTH = 123


def node(  # pylint: disable=too-many-positional-arguments
    node_id: int,
    median: int,
    minimum: int,
    hh: int,
    hl: int,
    storage: int = 1122,
) -> NodeStats:
    return NodeStats(
        node_id=node_id,
        median_reliability=median,
        min_reliability=minimum,
        hh_capacity=hh,
        hl_capacity=hl,
        median_storage=storage,
    )


def scenario_candidates() -> Dict[NodeId, NodeStats]:
    """The five fog reference pool the schemes were tuned against"""
    return {
        1: node(1, median=85, minimum=77, hh=4, hl=4),
        2: node(2, median=65, minimum=55, hh=4, hl=2),
        3: node(3, median=95, minimum=87, hh=4, hl=4),
        4: node(4, median=83, minimum=67, hh=4, hl=1),
        5: node(5, median=53, minimum=37, hh=4, hl=4),
    }


def brute_force_reliability(probabilities: Sequence[float], redundancy: int) -> float:
    """Sum over every survive/lose outcome with at most `redundancy` losses"""
    total = 0.0
    for outcome in itertools.product((True, False), repeat=len(probabilities)):
        if outcome.count(False) > redundancy:
            continue
        weight = 1.0
        for survived, p in zip(outcome, probabilities):
            weight *= p if survived else 1.0 - p
        total += weight
    return total


def assert_capacity_invariant(
    result: PlacementResult, candidates: Mapping[NodeId, NodeStats], redundancy: int
):
    for node_id, tiers in result.allocation.items():
        assert sum(tiers.values()) <= redundancy, (node_id, tiers)
        for tier, count in tiers.items():
            assert 0 < count <= candidates[node_id].tier_capacity(tier), (
                node_id,
                tier,
                count,
            )


def assert_slots_match_allocation(result: PlacementResult):
    counted = Counter((s.node_id, s.tier) for s in result.slots)
    expected = Counter(
        {
            (node_id, tier): count
            for node_id, tiers in result.allocation.items()
            for tier, count in tiers.items()
        }
    )
    assert counted == expected
