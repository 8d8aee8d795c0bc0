from __future__ import annotations

from enum import Enum
from enum import IntEnum
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from pydantic import BaseModel
from pydantic import computed_field
from pydantic import ConfigDict
from pydantic import Field

NodeId = int


###############################################################################
#              Models (structs) for how we describe fog nodes                 #
###############################################################################


class Tier(str, Enum):
    """Quality class of the free capacity a node offers

    HH slots sit on high storage, high reliability devices and are scored
    with the node's median historical reliability. HL slots sit on high
    storage, low reliability devices and are scored with the minimum
    observed reliability.
    """

    def __str__(self):
        return str(self.value)

    def __repr__(self):
        return f"T({self.value})"

    high = "HH"
    low = "HL"

    @property
    def reliability_field(self) -> str:
        return _TIER_RELIABILITY_FIELD[self]

    @property
    def capacity_field(self) -> str:
        return _TIER_CAPACITY_FIELD[self]

    @property
    def write_preference(self) -> str:
        return _TIER_WRITE_PREFERENCE[self]


_TIER_RELIABILITY_FIELD = {
    Tier.high: "median_reliability",
    Tier.low: "min_reliability",
}
_TIER_CAPACITY_FIELD = {
    Tier.high: "hh_capacity",
    Tier.low: "hl_capacity",
}
_TIER_WRITE_PREFERENCE = {
    Tier.high: "HHH",
    Tier.low: "HHL",
}


class AllocationSchemeKind(IntEnum):
    """Which search strategy picks the nodes for a placement

    The integer values are the historic scheme selectors (0, 1, 2) so
    callers that persisted a numeric selector keep working.
    """

    random = 0
    greedy_ascending = 1
    bounded_split = 2


class NodeStats(BaseModel):
    """Snapshot of what a candidate fog node can offer a placement

    Reliabilities are on a percentage scale [0, 100]. Capacities count free
    shard slots in each tier and are the caller's snapshot: a placement run
    never decrements them, it keeps its own ledger (see CandidatePool).
    """

    node_id: NodeId
    median_reliability: int = Field(ge=0, le=100)
    min_reliability: int = Field(ge=0, le=100)
    # Free slots in the HH tier (historically field "D")
    hh_capacity: int = Field(ge=0, alias="D")
    # Free slots in the HL tier (historically field "B")
    hl_capacity: int = Field(ge=0, alias="B")
    median_storage: int = Field(ge=0)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def tier_reliability(self, tier: Tier) -> float:
        return getattr(self, tier.reliability_field) / 100

    def tier_capacity(self, tier: Tier) -> int:
        return getattr(self, tier.capacity_field)


###############################################################################
#              Models (structs) for how we configure a placement              #
###############################################################################


class PlacementConfig(BaseModel):
    """Tunables for the allocation schemes

    Every loop in the schemes is bounded by one of these budgets so that a
    placement always terminates, and the random scheme draws from a seeded
    generator when a seed is given so runs are reproducible.
    """

    # Tolerated over-shoot above the required reliability before the bounded
    # split scheme trades a high tier slot back for a low tier one
    excess_reliability_limit: float = Field(default=0.05, ge=0)
    random_outer_attempts: int = Field(default=20, ge=1)
    # Per pick retry budget of the random scheme
    random_inner_attempts: int = Field(default=20, ge=1)
    max_rounds: int = Field(default=20, ge=1)
    seed: Optional[int] = None

    model_config = ConfigDict(frozen=True)


###############################################################################
#              Models (structs) for what a placement returns                  #
###############################################################################


class ShardSlot(BaseModel):
    node_id: NodeId
    tier: Tier
    probability: float

    model_config = ConfigDict(frozen=True)


class PlacementResult(BaseModel):
    scheme: AllocationSchemeKind
    required_reliability: float
    achieved_reliability: float = 0.0
    # node -> tier -> number of shards placed in that tier on that node
    allocation: Dict[NodeId, Dict[Tier, int]] = {}
    # The probability vector achieved_reliability was computed from
    slots: List[ShardSlot] = []
    iterations: int = 0
    # Bounded split fell back to its best feasible snapshot outside the band
    fallback: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def feasible(self) -> bool:
        return self.achieved_reliability >= self.required_reliability

    @property
    def probabilities(self) -> List[float]:
        return [s.probability for s in self.slots]

    def nodes(self) -> List[NodeId]:
        return [n for n, tiers in self.allocation.items() if sum(tiers.values())]

    def shard_assignments(self) -> List[Tuple[NodeId, Tier]]:
        """Shard index -> (node, tier), handing out consecutive indices
        per node, high tier first"""
        assignments = []
        for node_id, tiers in self.allocation.items():
            for tier in (Tier.high, Tier.low):
                assignments.extend([(node_id, tier)] * tiers.get(tier, 0))
        return assignments
