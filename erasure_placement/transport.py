"""
Moving shards between this node and the fog nodes a placement picked.

The RPC client itself lives elsewhere, here we only rely on the small
`NodeClient` protocol. Every remote request is its own failure domain: a
connection or protocol error on one node is logged and that node's shards are
treated as unavailable, the sibling requests carry on. Requests are fanned out
over a bounded thread pool and joined with a deadline, after which pending
work is cancelled and whatever arrived is used.
"""

import logging
import math
import threading
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait
from dataclasses import dataclass
from typing import Callable
from typing import Dict
from typing import List
from typing import Mapping
from typing import Optional
from typing import Protocol
from typing import Sequence
from typing import Tuple
from typing import TypeVar

from pydantic import BaseModel
from pydantic import Field

from erasure_placement.erasure import InsufficientShardsError
from erasure_placement.erasure import ShardCodec
from erasure_placement.interface import NodeId
from erasure_placement.interface import PlacementResult
from erasure_placement.interface import Tier

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 1

T = TypeVar("T")


class TransportError(Exception):
    """A remote node could not be reached or answered with garbage"""


class UnrecoverableBatchError(Exception):
    """Not enough shards of a batch could be fetched to rebuild it"""


class ShardMetadata(BaseModel):
    batch_id: int
    shard_index: Optional[int] = None
    comp_format: Optional[str] = None
    uncomp_size: Optional[int] = None


class ReadResponse(BaseModel):
    status: int
    data: Optional[bytes] = None
    metadata: Optional[ShardMetadata] = None


class WriteResponse(BaseModel):
    status: int
    reliability: Optional[float] = None


class TransportConfig(BaseModel):
    # Concurrent connections per fan out
    max_workers: int = Field(default=5, ge=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    # Deadline for a whole fan out, defaults to one request timeout per wave
    join_timeout_seconds: Optional[float] = Field(default=None, gt=0)

    def join_timeout(self, requests: int) -> float:
        if self.join_timeout_seconds is not None:
            return self.join_timeout_seconds
        waves = max(1, math.ceil(requests / self.max_workers))
        return waves * self.request_timeout_seconds


class NodeClient(Protocol):
    def write(
        self,
        metadata: ShardMetadata,
        data: bytes,
        preference: str,
        timeout: Optional[float] = None,
    ) -> WriteResponse: ...

    def get_data_shards(
        self,
        batch_id: int,
        comp_format: str,
        uncomp_size: int,
        timeout: Optional[float] = None,
    ) -> List[ReadResponse]: ...

    def get_parity_shards(
        self,
        batch_id: int,
        comp_format: str,
        uncomp_size: int,
        timeout: Optional[float] = None,
    ) -> List[ReadResponse]: ...

    def request_comp_format_size(
        self, batch_id: int, timeout: Optional[float] = None
    ) -> Dict[str, int]: ...

    def close(self) -> None: ...


ClientFactory = Callable[[NodeId], NodeClient]


def _fan_out(
    tasks: Mapping[NodeId, Callable[[threading.Event], T]],
    config: TransportConfig,
) -> Dict[NodeId, T]:
    """Run one task per node and join them with a deadline

    Tasks receive a cancellation event that is set once the deadline passes,
    tasks that have not started by then are skipped. A task that raises is
    logged and its node is left out of the result.
    """
    if not tasks:
        return {}
    cancelled = threading.Event()
    executor = ThreadPoolExecutor(max_workers=config.max_workers)
    futures: Dict[Future, NodeId] = {
        executor.submit(task, cancelled): node_id for node_id, task in tasks.items()
    }
    try:
        done, pending = wait(futures, timeout=config.join_timeout(len(futures)))
    finally:
        cancelled.set()
        executor.shutdown(wait=False, cancel_futures=True)

    if pending:
        logger.warning(
            "%d of %d node requests did not finish in time: %s",
            len(pending),
            len(futures),
            sorted(futures[f] for f in pending),
        )
    results: Dict[NodeId, T] = {}
    for future in done:
        if future.cancelled():
            continue
        error = future.exception()
        if error is not None:
            # The error stays with its own node
            logger.error("Request to node %s failed: %r", futures[future], error)
            continue
        results[futures[future]] = future.result()
    return results


def _close(client: NodeClient) -> None:
    try:
        client.close()
    except (TransportError, OSError) as e:
        logger.debug("Error closing client: %s", e)


def shard_targets(result: PlacementResult) -> Dict[int, Tuple[NodeId, Tier]]:
    """Shard index -> (node, tier) for every shard of a placement"""
    return dict(enumerate(result.shard_assignments()))


def write_shards(
    targets: Mapping[int, Tuple[NodeId, Tier]],
    shards: Sequence[bytes],
    metadata: ShardMetadata,
    client_for: ClientFactory,
    config: Optional[TransportConfig] = None,
) -> Dict[NodeId, List[int]]:
    """Send each shard to its target node, one connection per node

    Returns the shard indices each node acknowledged. Nodes that failed are
    logged and simply missing from (or short in) the result.
    """
    config = config or TransportConfig()
    by_node: Dict[NodeId, List[Tuple[int, Tier]]] = {}
    for index, (node_id, tier) in sorted(targets.items()):
        by_node.setdefault(node_id, []).append((index, tier))

    def writer(node_id: NodeId, work: List[Tuple[int, Tier]]):
        def run(cancelled: threading.Event) -> List[int]:
            written: List[int] = []
            if cancelled.is_set():
                return written
            try:
                client = client_for(node_id)
            except (TransportError, OSError) as e:
                logger.error("Unable to contact node %s for writing: %s", node_id, e)
                return written
            try:
                for index, tier in work:
                    if cancelled.is_set():
                        break
                    response = client.write(
                        metadata.model_copy(update={"shard_index": index}),
                        shards[index],
                        tier.write_preference,
                        timeout=config.request_timeout_seconds,
                    )
                    logger.debug(
                        "Node %s answered %s for shard %d (reliability %s)",
                        node_id,
                        response.status,
                        index,
                        response.reliability,
                    )
                    if response.status == STATUS_SUCCESS:
                        written.append(index)
            except (TransportError, OSError) as e:
                logger.error("Error while writing to node %s: %s", node_id, e)
            finally:
                _close(client)
            return written

        return run

    return _fan_out(
        {node_id: writer(node_id, work) for node_id, work in by_node.items()},
        config,
    )


def probe_format(
    batch_id: int,
    nodes: Sequence[NodeId],
    client_for: ClientFactory,
    config: Optional[TransportConfig] = None,
) -> Tuple[str, int]:
    """Ask nodes in turn for the batch's compression format and size"""
    config = config or TransportConfig()
    for node_id in nodes:
        try:
            client = client_for(node_id)
        except (TransportError, OSError) as e:
            logger.error("Unable to contact node %s for recovery: %s", node_id, e)
            continue
        try:
            format_size = client.request_comp_format_size(
                batch_id, timeout=config.request_timeout_seconds
            )
        except (TransportError, OSError) as e:
            logger.error("Error reading format of batch %d: %s", batch_id, e)
            continue
        finally:
            _close(client)
        if format_size:
            # There is only ever one entry
            return next(iter(format_size.items()))
    raise UnrecoverableBatchError(
        f"No node could describe the format of batch {batch_id}"
    )


def fetch_shards(  # pylint: disable=too-many-positional-arguments
    batch_id: int,
    nodes: Sequence[NodeId],
    client_for: ClientFactory,
    comp_format: str,
    uncomp_size: int,
    config: Optional[TransportConfig] = None,
) -> Dict[int, bytes]:
    """Read every shard of a batch the given nodes still hold"""
    config = config or TransportConfig()

    def reader(node_id: NodeId):
        def run(cancelled: threading.Event) -> Dict[int, bytes]:
            found: Dict[int, bytes] = {}
            if cancelled.is_set():
                return found
            try:
                client = client_for(node_id)
            except (TransportError, OSError) as e:
                logger.error("Unable to contact node %s for reading: %s", node_id, e)
                return found
            try:
                for fetch in (client.get_data_shards, client.get_parity_shards):
                    if cancelled.is_set():
                        break
                    responses = fetch(
                        batch_id,
                        comp_format,
                        uncomp_size,
                        timeout=config.request_timeout_seconds,
                    )
                    for response in responses:
                        if (
                            response.status == STATUS_SUCCESS
                            and response.data is not None
                            and response.metadata is not None
                            and response.metadata.shard_index is not None
                        ):
                            found[response.metadata.shard_index] = response.data
            except (TransportError, OSError) as e:
                logger.error("Error while reading from node %s: %s", node_id, e)
            finally:
                _close(client)
            logger.debug("Node %s returned shards %s", node_id, sorted(found))
            return found

        return run

    shards: Dict[int, bytes] = {}
    for found in _fan_out({n: reader(n) for n in nodes}, config).values():
        shards.update(found)
    return shards


@dataclass
class RecoveredBatch:
    batch_id: int
    payload: bytes
    shards: List[bytes]
    # Shard indices that had to be rebuilt rather than fetched
    rebuilt: List[int]


def recover_batch(
    batch_id: int,
    nodes: Sequence[NodeId],
    client_for: ClientFactory,
    codec: ShardCodec,
    config: Optional[TransportConfig] = None,
) -> RecoveredBatch:
    """Fetch what is left of a batch and rebuild all N shards

    Raises UnrecoverableBatchError if fewer than K shards could be fetched.
    """
    config = config or TransportConfig()
    comp_format, uncomp_size = probe_format(batch_id, nodes, client_for, config)
    logger.debug("Batch %d has format=%s size=%d", batch_id, comp_format, uncomp_size)

    fetched = fetch_shards(
        batch_id, nodes, client_for, comp_format, uncomp_size, config
    )
    fetched = {i: s for i, s in fetched.items() if 0 <= i < codec.n}
    if len(fetched) < codec.k:
        raise UnrecoverableBatchError(
            f"Batch {batch_id}: need {codec.k} shards, only {len(fetched)} arrived"
        )

    positions: List[Optional[bytes]] = [fetched.get(i) for i in range(codec.n)]
    try:
        shards = codec.decode_missing(positions)
    except InsufficientShardsError as e:
        raise UnrecoverableBatchError(f"Batch {batch_id}: {e}") from e

    rebuilt = [i for i in range(codec.n) if i not in fetched]
    logger.info("Recovered batch %d, rebuilt shards %s", batch_id, rebuilt)
    return RecoveredBatch(
        batch_id=batch_id,
        payload=codec.decode(shards),
        shards=shards,
        rebuilt=rebuilt,
    )
