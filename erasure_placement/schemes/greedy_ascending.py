import logging
from typing import List

from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import NodeId
from erasure_placement.interface import PlacementResult
from erasure_placement.interface import ShardSlot
from erasure_placement.interface import Tier
from erasure_placement.schemes import AllocationScheme
from erasure_placement.schemes import build_result
from erasure_placement.schemes import fill
from erasure_placement.schemes import PlacementContext

logger = logging.getLogger(__name__)


class GreedyAscendingScheme(AllocationScheme):
    """Least reliable nodes first, then repair the weakest link

    Phase A fills the HH tier of nodes in ascending reliability order, phase
    B tops up from the HL tier in the same order. That deliberately spends
    the least valuable capacity first. If the result is not reliable enough
    we repair it: the most reliable node that still has room takes an HL
    slot in place of the most recently assigned slot, walking backwards
    through the assignment order.

    The receiving node is the first one, in descending order, that still has
    HL capacity and room under the per node budget. Its HL reliability may
    be below the evicted slot, the walk keeps going towards the weaker early
    slots until the requirement is met. Every swap consumes one eviction
    index and every full node moves the cursor, so the repair loop ends
    after at most N + len(pool) steps.
    """

    kind = AllocationSchemeKind.greedy_ascending

    def allocate(self, context: PlacementContext) -> PlacementResult:
        pool = context.pool
        ascending = pool.ascending()

        slots: List[ShardSlot] = []
        fill(context, ascending, Tier.high, context.total, slots)
        if len(slots) < context.total:
            fill(context, ascending, Tier.low, context.total - len(slots), slots)

        if len(slots) < context.total:
            logger.info(
                "Not enough capacity to place %d shards, found %d slots",
                context.total,
                len(slots),
            )
            pool.reset()
            return build_result(self.kind, context, [], 0.0)

        descending = pool.descending()
        cursor = 0
        remove_index = context.total - 1
        swaps = 0
        achieved = context.evaluate(slots)
        while achieved < context.required_reliability:
            logger.debug(
                "Greedy repair %d: %s -> reliability %f",
                swaps,
                pool.allocation(),
                achieved,
            )
            if remove_index < 0:
                logger.info("Greedy repair ran out of slots to swap out")
                break

            evicted = slots[remove_index]
            cursor = self._next_receiver(context, descending, cursor)
            if cursor >= len(descending):
                logger.info("Greedy repair ran out of nodes to swap in")
                break

            node_id = descending[cursor]
            pool.release(evicted.node_id, evicted.tier)
            pool.commit(node_id, Tier.low)
            slots[remove_index] = context.slot(node_id, Tier.low)
            remove_index -= 1
            swaps += 1
            achieved = context.evaluate(slots)

        logger.info(
            "Greedy ascending finished after %d swaps with reliability %f",
            swaps,
            achieved,
        )
        return build_result(self.kind, context, slots, achieved, swaps)

    @staticmethod
    def _next_receiver(
        context: PlacementContext, descending: List[NodeId], cursor: int
    ) -> int:
        """First node at or after `cursor` (most reliable first) that can
        still take an HL slot"""
        while cursor < len(descending):
            if context.pool.available(descending[cursor], Tier.low) > 0:
                return cursor
            cursor += 1
        return cursor

    @staticmethod
    def description() -> str:
        return (
            "Fill from the least reliable nodes first, then swap in HL slots "
            "on the most reliable nodes until the requirement is met"
        )
