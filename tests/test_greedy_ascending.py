from pytest import approx

from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import PlacementConfig
from erasure_placement.interface import Tier
from erasure_placement.placement import select_placement
from erasure_placement.stats import reliability
from tests.util import assert_capacity_invariant
from tests.util import assert_slots_match_allocation
from tests.util import node
from tests.util import SCENARIO_DATA_LENGTH


def _greedy(candidates, required, n=9, k=6):
    return select_placement(
        n=n,
        k=k,
        required_reliability=required,
        data_length=SCENARIO_DATA_LENGTH,
        candidates=candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
    )


def test_repairs_weakest_slots_until_feasible(candidates):
    result = _greedy(candidates, required=0.75)

    assert result.feasible
    assert result.iterations == 5
    assert result.achieved_reliability == approx(0.7623, abs=1e-3)
    assert result.allocation == {
        5: {Tier.high: 3},
        2: {Tier.high: 1},
        3: {Tier.low: 3},
        1: {Tier.low: 2},
    }
    assert_capacity_invariant(result, candidates, redundancy=3)
    assert_slots_match_allocation(result)


def test_stops_at_first_feasible_swap(candidates):
    # One more swap would reach ~0.83, we must not keep going
    result = _greedy(candidates, required=0.75)
    assert result.achieved_reliability < 0.8


def test_no_repair_needed(candidates):
    result = _greedy(candidates, required=0.01)

    assert result.feasible
    assert result.iterations == 0
    # Phase A spends the least reliable high tier capacity first
    assert result.allocation == {
        5: {Tier.high: 3},
        2: {Tier.high: 3},
        4: {Tier.high: 3},
    }


def test_falls_back_to_low_tier_when_high_tier_runs_out():
    pool = {
        1: node(1, median=90, minimum=80, hh=1, hl=3),
        2: node(2, median=60, minimum=50, hh=1, hl=3),
    }
    result = _greedy(pool, required=0.0, n=4, k=1)

    assert result.allocation == {
        2: {Tier.high: 1, Tier.low: 2},
        1: {Tier.high: 1},
    }
    assert len(result.slots) == 4


def test_exhausted_repair_reports_last_state(candidates):
    result = _greedy(candidates, required=0.99)

    assert not result.feasible
    assert result.achieved_reliability >= _greedy(candidates, 0.0).achieved_reliability
    assert result.achieved_reliability == reliability(
        result.probabilities, 3, total=9
    )
    assert_capacity_invariant(result, candidates, redundancy=3)
    assert_slots_match_allocation(result)


def test_insufficient_capacity():
    pool = {
        1: node(1, median=90, minimum=80, hh=1, hl=1),
        2: node(2, median=60, minimum=50, hh=1, hl=1),
    }
    result = _greedy(pool, required=0.5)

    assert not result.feasible
    assert result.allocation == {}
    assert result.slots == []
    assert result.achieved_reliability == 0.0


def test_custom_config_is_ignored_by_greedy(candidates):
    a = _greedy(candidates, required=0.75)
    b = select_placement(
        n=9,
        k=6,
        required_reliability=0.75,
        data_length=SCENARIO_DATA_LENGTH,
        candidates=candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
        config=PlacementConfig(max_rounds=1, seed=1),
    )
    assert a == b


def test_repair_accepts_weaker_receiver_for_strong_slots():
    # Node 3's HL tier (0.80) is weaker than the 0.9 slots evicted first, the
    # repair still has to go through it to reach node 1's 0.5 slots
    pool = {
        1: node(1, median=50, minimum=40, hh=3, hl=3),
        2: node(2, median=90, minimum=85, hh=3, hl=3),
        3: node(3, median=95, minimum=80, hh=3, hl=3),
    }
    low = reliability([0.5] * 3 + [0.9] * 3, 3)
    high = reliability([0.8] * 3 + [0.9] * 3, 3)
    required = (low + high) / 2

    result = _greedy(pool, required=required, n=6, k=3)

    assert result.feasible
    # Swapping out node 2's slots alone never gets there
    assert result.iterations > 3
    assert result.allocation[3] == {Tier.low: 3}
    assert result.achieved_reliability == reliability(
        result.probabilities, 3, total=6
    )
    assert_capacity_invariant(result, pool, redundancy=3)
    assert_slots_match_allocation(result)


def test_repair_evicts_low_tier_slots():
    pool = {
        1: node(1, median=40, minimum=30, hh=1, hl=3),
        2: node(2, median=60, minimum=50, hh=1, hl=3),
        3: node(3, median=99, minimum=95, hh=0, hl=3),
    }
    # Phase A finds 2 HH slots, phase B appends HL slots on nodes 1 and 2
    # which are the first to be swapped out
    result = _greedy(pool, required=0.9, n=4, k=2)

    assert result.feasible
    assert result.iterations == 2
    assert result.allocation == {
        1: {Tier.high: 1},
        2: {Tier.high: 1},
        3: {Tier.low: 2},
    }
    assert result.achieved_reliability == approx(0.9753, abs=1e-3)
    assert_capacity_invariant(result, pool, redundancy=2)
    assert_slots_match_allocation(result)
