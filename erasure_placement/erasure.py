"""
Reed-Solomon shard codec used around a placement.

A microbatch is stored as K data shards followed by N-K parity shards. The
payload is prefixed with its length as a 4 byte big-endian integer and padded
so it splits evenly:

    shard_size = ceil((len(payload) + 4) / K)

Parity is computed column-wise: byte i of every data shard forms one RS
message whose N-K check symbols become byte i of the parity shards. Any K of
the N shards are enough to rebuild the rest.
"""

import logging
import math
from typing import List
from typing import Optional
from typing import Sequence

from reedsolo import ReedSolomonError
from reedsolo import RSCodec

logger = logging.getLogger(__name__)

LENGTH_PREFIX_BYTES = 4
# GF(2^8) codewords are at most 255 symbols long
MAX_TOTAL_SHARDS = 255


class InsufficientShardsError(Exception):
    """Fewer than K shards are present, the data cannot be rebuilt"""


class ShardCodec:
    def __init__(self, n: int, k: int):
        if k < 1:
            raise ValueError(f"k={k} must be at least 1")
        if n < k:
            raise ValueError(f"n={n} must be at least k={k}")
        if n > MAX_TOTAL_SHARDS:
            raise ValueError(f"n={n} exceeds {MAX_TOTAL_SHARDS} shards")
        self.n = n
        self.k = k
        self._rs = RSCodec(n - k) if n > k else None

    @property
    def parity(self) -> int:
        return self.n - self.k

    def shard_size(self, payload_length: int) -> int:
        return math.ceil((payload_length + LENGTH_PREFIX_BYTES) / self.k)

    def encode(self, payload: bytes) -> List[bytes]:
        """Split and encode `payload` into N equally sized shards"""
        shard_size = self.shard_size(len(payload))
        stored = len(payload).to_bytes(LENGTH_PREFIX_BYTES, "big") + payload
        stored = stored.ljust(shard_size * self.k, b"\x00")
        data = [stored[i * shard_size : (i + 1) * shard_size] for i in range(self.k)]
        logger.debug(
            "Encoding %d bytes into %d+%d shards of %d bytes",
            len(payload),
            self.k,
            self.parity,
            shard_size,
        )
        return data + self.encode_parity(data)

    def encode_parity(self, data_shards: Sequence[bytes]) -> List[bytes]:
        if len(data_shards) != self.k:
            raise ValueError(f"Expected {self.k} data shards, got {len(data_shards)}")
        if self._rs is None:
            return []
        shard_size = len(data_shards[0])
        parity = [bytearray(shard_size) for _ in range(self.parity)]
        for pos in range(shard_size):
            codeword = self._rs.encode(bytes(shard[pos] for shard in data_shards))
            for i, symbol in enumerate(codeword[self.k :]):
                parity[i][pos] = symbol
        return [bytes(p) for p in parity]

    def decode_missing(self, shards: Sequence[Optional[bytes]]) -> List[bytes]:
        """Rebuild every missing (None) shard, returning all N shards"""
        if len(shards) != self.n:
            raise ValueError(f"Expected {self.n} shard positions, got {len(shards)}")
        missing = [i for i, shard in enumerate(shards) if shard is None]
        present = self.n - len(missing)
        if present < self.k:
            raise InsufficientShardsError(
                f"Need {self.k} shards, only {present} available"
            )
        if not missing:
            return list(shards)  # type: ignore[arg-type]

        if all(shards[i] is not None for i in range(self.k)):
            # Only parity is gone, recompute it
            data = [bytes(s) for s in shards[: self.k]]  # type: ignore[arg-type]
            return data + self.encode_parity(data)

        logger.info("Data shards %s missing, decoding", missing)
        shard_size = len(next(s for s in shards if s is not None))
        rebuilt = [bytearray(shard_size) for _ in range(self.n)]
        for pos in range(shard_size):
            codeword = bytearray(
                0 if shard is None else shard[pos] for shard in shards
            )
            try:
                _, full, _ = self._rs.decode(  # type: ignore[union-attr]
                    codeword, erase_pos=missing, only_erasures=True
                )
            except ReedSolomonError as e:
                raise InsufficientShardsError(
                    f"Reed-Solomon decode failed at byte {pos}: {e}"
                ) from e
            for i in range(self.n):
                rebuilt[i][pos] = full[i]
        return [bytes(s) for s in rebuilt]

    def decode(self, shards: Sequence[Optional[bytes]]) -> bytes:
        """Reassemble the original payload from any K of the N shards"""
        full = self.decode_missing(shards)
        stored = b"".join(full[: self.k])
        length = int.from_bytes(stored[:LENGTH_PREFIX_BYTES], "big")
        return stored[LENGTH_PREFIX_BYTES : LENGTH_PREFIX_BYTES + length]
