import json

import pytest
from hypothesis import given
from hypothesis import settings
from hypothesis import strategies as st

from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import NodeStats
from erasure_placement.interface import PlacementConfig
from erasure_placement.interface import PlacementResult
from erasure_placement.interface import Tier
from erasure_placement.placement import PlacementEngine
from erasure_placement.placement import schemes
from erasure_placement.placement import select_placement
from erasure_placement.stats import reliability
from tests.util import assert_capacity_invariant
from tests.util import assert_slots_match_allocation
from tests.util import node
from tests.util import SCENARIO_DATA_LENGTH


def test_registry_covers_every_kind():
    registry = schemes()
    assert set(registry) == set(AllocationSchemeKind)
    for kind, scheme in registry.items():
        assert scheme.kind == kind
        assert scheme.description()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"k": 0},
        {"n": 5, "k": 6},
        {"required_reliability": -0.1},
        {"required_reliability": 1.5},
        {"data_length": -1},
    ],
)
def test_invalid_parameters(candidates, kwargs):
    params = {
        "n": 9,
        "k": 6,
        "required_reliability": 0.77,
        "data_length": SCENARIO_DATA_LENGTH,
        "candidates": candidates,
    }
    params.update(kwargs)
    with pytest.raises(ValueError):
        PlacementEngine(**params)


def test_scheme_accepts_legacy_integers(candidates):
    engine = PlacementEngine(9, 6, 0.75, SCENARIO_DATA_LENGTH, candidates, scheme=1)
    assert engine.scheme_kind == AllocationSchemeKind.greedy_ascending
    with pytest.raises(ValueError):
        PlacementEngine(9, 6, 0.75, SCENARIO_DATA_LENGTH, candidates, scheme=7)


def test_engine_accessors(candidates):
    engine = PlacementEngine(
        9,
        6,
        0.75,
        SCENARIO_DATA_LENGTH,
        candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
    )
    assert engine.m == 3
    assert engine.shard_size == 20
    # Accessors run the selection lazily
    allocation = engine.allocation_map()
    assert engine.result.allocation == allocation
    assert engine.achieved_reliability() == engine.result.achieved_reliability


@pytest.mark.parametrize("kind", list(AllocationSchemeKind))
def test_insufficient_capacity(kind):
    pool = {
        1: node(1, median=90, minimum=80, hh=1, hl=1),
        2: node(2, median=60, minimum=50, hh=1, hl=1),
    }
    result = select_placement(9, 6, 0.5, SCENARIO_DATA_LENGTH, pool, scheme=kind)

    assert not result.feasible
    assert result.allocation == {}
    assert result.slots == []
    assert result.achieved_reliability == 0.0


@pytest.mark.parametrize("kind", list(AllocationSchemeKind))
def test_no_node_can_store_a_shard(kind):
    pool = {
        i: node(i, median=99, minimum=99, hh=4, hl=4, storage=10)
        for i in range(1, 6)
    }
    # 123 bytes over 6 data shards is a 20 byte shard
    result = select_placement(9, 6, 0.5, SCENARIO_DATA_LENGTH, pool, scheme=kind)

    assert not result.feasible
    assert result.allocation == {}
    assert result.iterations == 0


def test_undersized_nodes_are_skipped():
    pool = {
        1: node(1, median=99, minimum=99, hh=4, hl=4, storage=10),
        2: node(2, median=90, minimum=80, hh=4, hl=4),
        3: node(3, median=80, minimum=70, hh=4, hl=4),
        4: node(4, median=70, minimum=60, hh=4, hl=4),
    }
    result = select_placement(
        9,
        6,
        0.1,
        SCENARIO_DATA_LENGTH,
        pool,
        scheme=AllocationSchemeKind.greedy_ascending,
    )
    assert result.feasible
    assert 1 not in result.allocation


def test_zero_redundancy_puts_nothing_anywhere(candidates):
    # With M = 0 a node may not hold a single shard
    result = select_placement(
        6,
        6,
        0.0,
        SCENARIO_DATA_LENGTH,
        candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
    )
    assert result.allocation == {}


@pytest.mark.parametrize("kind", list(AllocationSchemeKind))
def test_caller_stats_are_not_mutated(candidates, config, kind):
    before = {n: s.model_copy() for n, s in candidates.items()}
    engine = PlacementEngine(
        9, 6, 0.77, SCENARIO_DATA_LENGTH, candidates, scheme=kind, config=config
    )
    engine.select()
    engine.select()
    assert candidates == before


def test_repeated_selection_is_independent(candidates):
    engine = PlacementEngine(
        9,
        6,
        0.75,
        SCENARIO_DATA_LENGTH,
        candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
    )
    assert engine.select() == engine.select()


def test_shard_assignments():
    result = PlacementResult(
        scheme=AllocationSchemeKind.greedy_ascending,
        required_reliability=0.5,
        allocation={
            7: {Tier.low: 1, Tier.high: 2},
            3: {Tier.low: 2},
        },
    )
    assert result.shard_assignments() == [
        (7, Tier.high),
        (7, Tier.high),
        (7, Tier.low),
        (3, Tier.low),
        (3, Tier.low),
    ]
    assert result.nodes() == [7, 3]


def test_result_serializes_feasibility(candidates):
    result = select_placement(
        9,
        6,
        0.75,
        SCENARIO_DATA_LENGTH,
        candidates,
        scheme=AllocationSchemeKind.greedy_ascending,
    )
    dumped = json.loads(result.model_dump_json())
    assert dumped["feasible"] is True
    assert dumped["scheme"] == 1
    assert dumped["allocation"]["3"] == {"HL": 3}


def test_uniform_floor(candidates):
    engine = PlacementEngine(9, 6, 0.77, SCENARIO_DATA_LENGTH, candidates)
    floor = engine.uniform_reliability_floor()
    assert 0.5 < floor < 1.0


def test_stats_accept_legacy_field_names():
    stats = NodeStats.model_validate(
        {
            "node_id": 4,
            "median_reliability": 83,
            "min_reliability": 67,
            "D": 4,
            "B": 1,
            "median_storage": 1122,
            "max_storage": 4096,
            "address": {"host": "fog-4", "port": 9090},
        }
    )
    assert stats.hh_capacity == 4
    assert stats.hl_capacity == 1
    # Directory fields the placement never reads are not carried along
    assert set(stats.model_dump()) == {
        "node_id",
        "median_reliability",
        "min_reliability",
        "hh_capacity",
        "hl_capacity",
        "median_storage",
    }


@st.composite
def node_pools(draw):
    size = draw(st.integers(min_value=1, max_value=8))
    pool = {}
    for node_id in range(1, size + 1):
        minimum = draw(st.integers(min_value=0, max_value=100))
        median = draw(st.integers(min_value=minimum, max_value=100))
        pool[node_id] = NodeStats(
            node_id=node_id,
            median_reliability=median,
            min_reliability=minimum,
            hh_capacity=draw(st.integers(min_value=0, max_value=6)),
            hl_capacity=draw(st.integers(min_value=0, max_value=6)),
            median_storage=draw(st.integers(min_value=0, max_value=50)),
        )
    return pool


@settings(max_examples=150, deadline=None)
@given(
    pool=node_pools(),
    kind=st.sampled_from(list(AllocationSchemeKind)),
    k=st.integers(min_value=1, max_value=6),
    parity=st.integers(min_value=0, max_value=4),
    required=st.floats(min_value=0.0, max_value=1.0),
    excess=st.floats(min_value=0.0, max_value=0.2),
    seed=st.integers(min_value=0, max_value=1000),
)
def test_every_scheme_keeps_its_promises(
    pool, kind, k, parity, required, excess, seed
):
    n = k + parity
    result = select_placement(
        n,
        k,
        required,
        data_length=100,
        candidates=pool,
        scheme=kind,
        config=PlacementConfig(excess_reliability_limit=excess, seed=seed),
    )

    assert_capacity_invariant(result, pool, redundancy=parity)
    assert_slots_match_allocation(result)
    for node_id in result.allocation:
        assert pool[node_id].median_storage >= 100 // k
    if result.slots:
        assert len(result.slots) == n
        assert result.achieved_reliability == reliability(
            result.probabilities, parity, total=n
        )
    else:
        assert result.allocation == {}
        assert result.achieved_reliability == 0.0
    assert result.feasible == (result.achieved_reliability >= required)
