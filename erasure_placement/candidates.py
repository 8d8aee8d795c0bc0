from typing import Dict
from typing import List
from typing import Mapping

from erasure_placement.interface import NodeId
from erasure_placement.interface import NodeStats
from erasure_placement.interface import Tier


class CandidatePool:
    """Read-only view over the caller's node statistics plus a per-run ledger

    The caller's NodeStats are never written to. Slots committed during a
    placement run are tracked here, so free capacity is always
    `declared capacity - committed in this run`, and at most `redundancy`
    slots (both tiers together) may land on any single node.
    """

    def __init__(
        self,
        candidates: Mapping[NodeId, NodeStats],
        shard_size: int,
        redundancy: int,
    ):
        self._stats: Dict[NodeId, NodeStats] = dict(candidates)
        self.shard_size = shard_size
        self.redundancy = redundancy
        self._ascending: List[NodeId] = sorted(
            self._stats,
            key=lambda n: (self._stats[n].median_reliability, n),
        )
        self._committed: Dict[NodeId, Dict[Tier, int]] = {}

    def __len__(self) -> int:
        return len(self._stats)

    def __contains__(self, node_id) -> bool:
        return node_id in self._stats

    def stats(self, node_id: NodeId) -> NodeStats:
        return self._stats[node_id]

    def ids(self) -> List[NodeId]:
        """Node ids in the order the caller supplied them"""
        return list(self._stats)

    def ascending(self) -> List[NodeId]:
        """Node ids by ascending median reliability, ties by node id"""
        return list(self._ascending)

    def descending(self) -> List[NodeId]:
        return self._ascending[::-1]

    def admitted(self, node_id: NodeId) -> bool:
        return self._stats[node_id].median_storage >= self.shard_size

    def admitted_nodes(self) -> List[NodeId]:
        return [n for n in self._ascending if self.admitted(n)]

    def reliability(self, node_id: NodeId, tier: Tier) -> float:
        return self._stats[node_id].tier_reliability(tier)

    def committed(self, node_id: NodeId, tier: Tier) -> int:
        return self._committed.get(node_id, {}).get(tier, 0)

    def node_committed(self, node_id: NodeId) -> int:
        return sum(self._committed.get(node_id, {}).values())

    def node_free(self, node_id: NodeId) -> int:
        """Slots this node may still take before hitting the M budget"""
        return max(0, self.redundancy - self.node_committed(node_id))

    def free(self, node_id: NodeId, tier: Tier) -> int:
        declared = self._stats[node_id].tier_capacity(tier)
        return max(0, declared - self.committed(node_id, tier))

    def hh_free(self, node_id: NodeId) -> int:
        return self.free(node_id, Tier.high)

    def hl_free(self, node_id: NodeId) -> int:
        return self.free(node_id, Tier.low)

    def available(self, node_id: NodeId, tier: Tier) -> int:
        """How many more slots of `tier` this node can take right now"""
        if not self.admitted(node_id):
            return 0
        return min(self.free(node_id, tier), self.node_free(node_id))

    def commit(self, node_id: NodeId, tier: Tier, count: int = 1) -> None:
        if count <= 0:
            return
        if count > self.available(node_id, tier):
            raise ValueError(
                f"Node {node_id} cannot take {count} more {tier} slots "
                f"({self.available(node_id, tier)} available)"
            )
        tiers = self._committed.setdefault(node_id, {})
        tiers[tier] = tiers.get(tier, 0) + count

    def release(self, node_id: NodeId, tier: Tier, count: int = 1) -> None:
        held = self.committed(node_id, tier)
        if count > held:
            raise ValueError(
                f"Node {node_id} only holds {held} {tier} slots, "
                f"cannot release {count}"
            )
        self._committed[node_id][tier] = held - count

    def total_available(self) -> int:
        """Upper bound on how many slots the admitted pool can hold"""
        total = 0
        for node_id in self.admitted_nodes():
            tiers = self.available(node_id, Tier.high) + self.available(
                node_id, Tier.low
            )
            total += min(tiers, self.node_free(node_id))
        return total

    def allocation(self) -> Dict[NodeId, Dict[Tier, int]]:
        """Copy of the ledger with empty entries dropped"""
        snapshot: Dict[NodeId, Dict[Tier, int]] = {}
        for node_id, tiers in self._committed.items():
            kept = {tier: count for tier, count in tiers.items() if count > 0}
            if kept:
                snapshot[node_id] = kept
        return snapshot

    def reset(self) -> None:
        self._committed = {}
