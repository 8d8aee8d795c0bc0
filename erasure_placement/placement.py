import logging
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Union

import numpy as np

from erasure_placement.candidates import CandidatePool
from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import NodeId
from erasure_placement.interface import NodeStats
from erasure_placement.interface import PlacementConfig
from erasure_placement.interface import PlacementResult
from erasure_placement.interface import Tier
from erasure_placement.schemes import AllocationScheme
from erasure_placement.schemes import PlacementContext
from erasure_placement.schemes.bounded_split import BoundedSplitScheme
from erasure_placement.schemes.greedy_ascending import GreedyAscendingScheme
from erasure_placement.schemes.random_scheme import RandomScheme
from erasure_placement.stats import ReliabilityInputError
from erasure_placement.stats import required_uniform_reliability

logger = logging.getLogger(__name__)


def schemes() -> Dict[AllocationSchemeKind, AllocationScheme]:
    return {
        AllocationSchemeKind.random: RandomScheme(),
        AllocationSchemeKind.greedy_ascending: GreedyAscendingScheme(),
        AllocationSchemeKind.bounded_split: BoundedSplitScheme(),
    }


class PlacementEngine:
    """Decide which fog nodes receive which erasure coded shards

    Construct one engine per placement request. The candidate statistics are
    copied into a per-run CandidatePool so the caller's snapshot is never
    modified and independent engines can run concurrently.

    Example:
        engine = PlacementEngine(
            n=9, k=6, required_reliability=0.77, data_length=123,
            candidates={1: NodeStats(...), ...},
            scheme=AllocationSchemeKind.bounded_split,
        )
        result = engine.select()
        if result.feasible:
            write_shards(result, ...)
    """

    def __init__(  # pylint: disable=too-many-positional-arguments
        self,
        n: int,
        k: int,
        required_reliability: float,
        data_length: int,
        candidates: Mapping[NodeId, NodeStats],
        scheme: Union[AllocationSchemeKind, int] = AllocationSchemeKind.bounded_split,
        config: Optional[PlacementConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if k < 1:
            raise ValueError(f"k={k} must be at least 1")
        if n < k:
            raise ValueError(f"n={n} must be at least k={k}")
        if not 0.0 <= required_reliability <= 1.0:
            raise ValueError(
                f"required_reliability={required_reliability} must be in [0, 1]"
            )
        if data_length < 0:
            raise ValueError(f"data_length={data_length} must not be negative")

        self.n = n
        self.k = k
        self.m = n - k
        self.required_reliability = required_reliability
        self.shard_size = data_length // k
        self.scheme_kind = AllocationSchemeKind(scheme)
        self.config = config or PlacementConfig()
        if rng is None:
            rng = np.random.default_rng(seed=self.config.seed)
        self._rng = rng
        self._candidates = dict(candidates)
        self._result: Optional[PlacementResult] = None

        logger.info(
            "Initialized with N=%d K=%d required reliability=%f scheme=%s "
            "shard size=%d candidates=%d",
            n,
            k,
            required_reliability,
            self.scheme_kind.name,
            self.shard_size,
            len(self._candidates),
        )

    def select(self) -> PlacementResult:
        pool = CandidatePool(self._candidates, self.shard_size, self.m)
        context = PlacementContext(
            total=self.n,
            redundancy=self.m,
            required_reliability=self.required_reliability,
            pool=pool,
            config=self.config,
            rng=self._rng,
        )

        if not pool.admitted_nodes():
            logger.info(
                "No candidate node can store a %d byte shard", self.shard_size
            )
            self._result = PlacementResult(
                scheme=self.scheme_kind,
                required_reliability=self.required_reliability,
            )
            return self._result

        scheme = schemes()[self.scheme_kind]
        logger.info(
            "Using scheme %s: %s", self.scheme_kind.name, scheme.description()
        )
        try:
            result = scheme.allocate(context)
        except ReliabilityInputError:
            logger.exception("Scheme %s built a malformed placement", scheme)
            result = PlacementResult(
                scheme=self.scheme_kind,
                required_reliability=self.required_reliability,
            )

        if result.feasible:
            logger.info(
                "Achieved reliability %f with %s",
                result.achieved_reliability,
                result.allocation,
            )
        else:
            logger.info(
                "No placement meets reliability %f (best %f, a uniform "
                "placement would need %.3f per shard)",
                self.required_reliability,
                result.achieved_reliability,
                self.uniform_reliability_floor(),
            )
        self._result = result
        return result

    def uniform_reliability_floor(self) -> float:
        """Per shard reliability every slot would need if all were equal"""
        return required_uniform_reliability(self.n, self.m, self.required_reliability)

    @property
    def result(self) -> PlacementResult:
        if self._result is None:
            return self.select()
        return self._result

    def allocation_map(self) -> Dict[NodeId, Dict[Tier, int]]:
        return self.result.allocation

    def achieved_reliability(self) -> float:
        return self.result.achieved_reliability


def select_placement(  # pylint: disable=too-many-positional-arguments
    n: int,
    k: int,
    required_reliability: float,
    data_length: int,
    candidates: Mapping[NodeId, NodeStats],
    scheme: Union[AllocationSchemeKind, int] = AllocationSchemeKind.bounded_split,
    config: Optional[PlacementConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> PlacementResult:
    return PlacementEngine(
        n=n,
        k=k,
        required_reliability=required_reliability,
        data_length=data_length,
        candidates=candidates,
        scheme=scheme,
        config=config,
        rng=rng,
    ).select()
