import logging
import math
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

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

Snapshot = Tuple[float, Dict[NodeId, Dict[Tier, int]], List[ShardSlot]]


class _Cursor:
    """Position in a node order that only ever moves forward"""

    def __init__(self, order: List[NodeId]):
        self.order = order
        self.index = 0

    def advance(self):
        self.index += 1

    def seek(self, context: PlacementContext, tier: Tier) -> Optional[NodeId]:
        """Move to the first node that can still take a `tier` slot"""
        while self.index < len(self.order):
            node_id = self.order[self.index]
            if context.pool.available(node_id, tier) > 0:
                return node_id
            self.index += 1
        return None


class BoundedSplitScheme(AllocationScheme):
    """Aim for a reliability band instead of a bare threshold

    Half the shards (rounded up) start on the HL tier of the least reliable
    nodes and the other half on the HH tier of the most reliable ones. Each
    round we evaluate the placement and:

        * below the requirement: upgrade the newest low slot to an HH slot
          on the next most reliable node with room
        * above requirement + excess limit: downgrade the newest high slot
          to an HL slot on the next least reliable node with room
        * same reliability as the previous round: step the high cursor so we
          do not keep trying the same swap

    The stall rule is a heuristic and can walk past an in-band placement.
    Because the search can also overshoot, we remember the lowest feasible
    placement seen and fall back to it when the round budget runs out
    without landing in the band.
    """

    kind = AllocationSchemeKind.bounded_split

    def allocate(self, context: PlacementContext) -> PlacementResult:
        pool = context.pool
        required = context.required_reliability
        ceiling = required + context.config.excess_reliability_limit

        low_target = math.ceil(context.total / 2)
        high_target = context.total // 2

        low: List[ShardSlot] = []
        high: List[ShardSlot] = []
        fill(context, pool.ascending(), Tier.low, low_target, low)
        if len(low) < low_target:
            # Only the low side hands its deficit over
            high_target += low_target - len(low)
        fill(context, pool.descending(), Tier.high, high_target, high)
        if len(high) < high_target:
            logger.info(
                "Not enough capacity to place %d shards (%d low, %d high)",
                context.total,
                len(low),
                len(high),
            )
            pool.reset()
            return build_result(self.kind, context, [], 0.0)

        low_cursor = _Cursor(pool.ascending())
        high_cursor = _Cursor(pool.descending())
        best: Optional[Snapshot] = None
        previous: Optional[float] = None
        rounds = 0

        for rounds in range(1, context.config.max_rounds + 1):
            achieved = context.evaluate(low + high)
            logger.debug(
                "Bounded split round %d: %s -> reliability %f",
                rounds,
                pool.allocation(),
                achieved,
            )
            best = self._remember(
                best, achieved, required, pool.allocation(), low + high
            )
            if required <= achieved <= ceiling:
                break

            if achieved == previous:
                high_cursor.advance()
            previous = achieved

            if achieved < required:
                if not self._swap(context, high_cursor, Tier.high, low, high):
                    break
            elif not self._swap(context, low_cursor, Tier.low, high, low):
                break

        achieved = context.evaluate(low + high)
        best = self._remember(
            best, achieved, required, pool.allocation(), low + high
        )
        if required <= achieved <= ceiling:
            logger.info(
                "Bounded split landed in [%f, %f] with %f after %d rounds",
                required,
                ceiling,
                achieved,
                rounds,
            )
            return build_result(self.kind, context, low + high, achieved, rounds)

        if best is not None:
            best_reliability, allocation, slots = best
            logger.info(
                "Bounded split fell back to best feasible placement %f "
                "outside [%f, %f]",
                best_reliability,
                required,
                ceiling,
            )
            return build_result(
                self.kind,
                context,
                slots,
                best_reliability,
                rounds,
                fallback=True,
                allocation=allocation,
            )

        logger.info(
            "Could not find a selection of nodes that satisfies reliability %f",
            required,
        )
        return build_result(self.kind, context, low + high, achieved, rounds)

    @staticmethod
    def _swap(  # pylint: disable=too-many-positional-arguments
        context: PlacementContext,
        cursor: _Cursor,
        tier: Tier,
        donors: List[ShardSlot],
        receivers: List[ShardSlot],
    ) -> bool:
        """Move the newest slot of `donors` onto the next node under
        `cursor` in `tier`, appending it to `receivers`"""
        if not donors:
            return False
        node_id = cursor.seek(context, tier)
        if node_id is None:
            return False
        evicted = donors.pop()
        context.pool.release(evicted.node_id, evicted.tier)
        context.pool.commit(node_id, tier)
        receivers.append(context.slot(node_id, tier))
        return True

    @staticmethod
    def _remember(
        best: Optional[Snapshot],
        achieved: float,
        required: float,
        allocation: Dict[NodeId, Dict[Tier, int]],
        slots: List[ShardSlot],
    ) -> Optional[Snapshot]:
        if achieved < required:
            return best
        if best is None or achieved < best[0]:
            return achieved, allocation, list(slots)
        return best

    @staticmethod
    def description() -> str:
        return (
            "Split shards between the least and most reliable nodes and trade "
            "slots until reliability lands between the requirement and the "
            "excess limit"
        )
