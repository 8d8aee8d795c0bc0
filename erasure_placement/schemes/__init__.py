from dataclasses import dataclass
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Sequence

import numpy as np

from erasure_placement.candidates import CandidatePool
from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import NodeId
from erasure_placement.interface import PlacementConfig
from erasure_placement.interface import PlacementResult
from erasure_placement.interface import ShardSlot
from erasure_placement.interface import Tier
from erasure_placement.stats import reliability


@dataclass
class PlacementContext:
    """Everything a scheme needs for one placement run"""

    total: int  # N, shards to place
    redundancy: int  # M = N - K, losses we can tolerate
    required_reliability: float
    pool: CandidatePool
    config: PlacementConfig
    rng: np.random.Generator

    def evaluate(self, slots: Sequence[ShardSlot]) -> float:
        return reliability(
            [s.probability for s in slots], self.redundancy, total=self.total
        )

    def slot(self, node_id: NodeId, tier: Tier) -> ShardSlot:
        return ShardSlot(
            node_id=node_id,
            tier=tier,
            probability=self.pool.reliability(node_id, tier),
        )


class AllocationScheme:
    """Stateless interface for a shard placement strategy

    A scheme implements one pure function, `allocate`, that decides how many
    shards of each tier go to which candidate node. The scheme must commit
    every slot it hands out through `context.pool` so the per node and per
    tier capacity limits hold, and must compute the returned reliability
    with `context.evaluate` over exactly the slots it returns.

    Not finding a placement is an ordinary outcome: return a result whose
    achieved reliability is below the requirement rather than raising.
    """

    kind: AllocationSchemeKind

    def allocate(self, context: PlacementContext) -> PlacementResult:
        raise NotImplementedError

    @staticmethod
    def description() -> str:
        """ Optional description of the scheme """
        return "No description"


def fill(
    context: PlacementContext,
    order: Iterable[NodeId],
    tier: Tier,
    want: int,
    slots: List[ShardSlot],
) -> int:
    """Walk `order` taking as many `tier` slots from each node as it can
    until `want` slots were appended to `slots`. Returns how many were."""
    taken = 0
    for node_id in order:
        if taken >= want:
            break
        count = min(context.pool.available(node_id, tier), want - taken)
        if count <= 0:
            continue
        context.pool.commit(node_id, tier, count)
        slots.extend([context.slot(node_id, tier)] * count)
        taken += count
    return taken


def build_result(  # pylint: disable=too-many-positional-arguments
    kind: AllocationSchemeKind,
    context: PlacementContext,
    slots: Sequence[ShardSlot],
    achieved: float,
    iterations: int = 0,
    fallback: bool = False,
    allocation: Optional[Dict[NodeId, Dict[Tier, int]]] = None,
) -> PlacementResult:
    return PlacementResult(
        scheme=kind,
        required_reliability=context.required_reliability,
        achieved_reliability=achieved,
        allocation=context.pool.allocation() if allocation is None else allocation,
        slots=list(slots),
        iterations=iterations,
        fallback=fallback,
    )
