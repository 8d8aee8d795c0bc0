import logging
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
from erasure_placement.schemes import PlacementContext

logger = logging.getLogger(__name__)


class RandomScheme(AllocationScheme):
    kind = AllocationSchemeKind.random

    def allocate(self, context: PlacementContext) -> PlacementResult:
        pool = context.pool
        nodes = pool.ids()
        config = context.config

        slots: List[ShardSlot] = []
        achieved = 0.0
        for attempt in range(1, config.random_outer_attempts + 1):
            pool.reset()
            slots = []
            while len(slots) < context.total:
                pick = self._pick(context, nodes)
                if pick is None:
                    # Not enough capacity to even draw N slots, retrying
                    # with another sample will not help
                    logger.info(
                        "Random attempt %d only drew %d of %d slots",
                        attempt,
                        len(slots),
                        context.total,
                    )
                    pool.reset()
                    return build_result(self.kind, context, [], 0.0, attempt)
                node_id, tier = pick
                pool.commit(node_id, tier)
                slots.append(context.slot(node_id, tier))

            achieved = context.evaluate(slots)
            logger.debug(
                "Random attempt %d: %s -> reliability %f",
                attempt,
                pool.allocation(),
                achieved,
            )
            # First fit, we do not look for a better sample
            if achieved >= context.required_reliability:
                return build_result(self.kind, context, slots, achieved, attempt)

        return build_result(
            self.kind, context, slots, achieved, config.random_outer_attempts
        )

    @staticmethod
    def _pick(
        context: PlacementContext, nodes: List[NodeId]
    ) -> Optional[Tuple[NodeId, Tier]]:
        if not nodes:
            return None
        for _ in range(context.config.random_inner_attempts):
            node_id = nodes[int(context.rng.integers(len(nodes)))]
            tier = Tier.high if int(context.rng.integers(2)) == 0 else Tier.low
            if context.pool.available(node_id, tier) > 0:
                return node_id, tier
        return None

    @staticmethod
    def description() -> str:
        return (
            "Draw N random (node, tier) slots and keep the first draw that "
            "meets the required reliability"
        )
