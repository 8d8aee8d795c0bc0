import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Optional
from typing import Sequence

from pydantic import TypeAdapter

from erasure_placement.interface import AllocationSchemeKind
from erasure_placement.interface import NodeId
from erasure_placement.interface import NodeStats
from erasure_placement.interface import PlacementConfig
from erasure_placement.placement import PlacementEngine
from erasure_placement.stats import nines

_stats_list = TypeAdapter(list[NodeStats])


def load_candidates(raw: Any) -> Dict[NodeId, NodeStats]:
    """Accept either {"<node id>": {...}} or [{"node_id": ..., ...}]"""
    if isinstance(raw, dict):
        raw = [
            {"node_id": node_id, **stats} if "node_id" not in stats else stats
            for node_id, stats in raw.items()
        ]
    return {s.node_id: s for s in _stats_list.validate_python(raw)}


def parse_scheme(value: str) -> AllocationSchemeKind:
    if value.isdigit():
        return AllocationSchemeKind(int(value))
    try:
        return AllocationSchemeKind[value.replace("-", "_")]
    except KeyError as e:
        raise argparse.ArgumentTypeError(
            f"Unknown scheme '{value}'. Choose from "
            f"{', '.join(s.name.replace('_', '-') for s in AllocationSchemeKind)}"
        ) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="place-shards",
        description="Pick fog nodes for N erasure coded shards of a microbatch",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("-n", type=int, required=True, help="Total shards (N)")
    parser.add_argument("-k", type=int, required=True, help="Data shards (K)")
    parser.add_argument(
        "--required",
        type=float,
        required=True,
        help="Required probability that the microbatch stays recoverable",
    )
    parser.add_argument(
        "--data-length",
        type=int,
        required=True,
        help="Size of the microbatch in bytes, shard size is this divided by K",
    )
    parser.add_argument(
        "--scheme",
        type=parse_scheme,
        default=AllocationSchemeKind.bounded_split,
        help="random, greedy-ascending or bounded-split (or 0, 1, 2)",
    )
    parser.add_argument(
        "--excess-limit",
        type=float,
        default=PlacementConfig().excess_reliability_limit,
        help="How far above --required the bounded split scheme may land",
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Seed for the random scheme"
    )
    parser.add_argument("--debug", action="store_true", help="Show verbose output")
    parser.add_argument(
        "candidates",
        type=Path,
        help="JSON file with the statistics of every candidate node",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        candidates = load_candidates(json.loads(args.candidates.read_text()))
        engine = PlacementEngine(
            n=args.n,
            k=args.k,
            required_reliability=args.required,
            data_length=args.data_length,
            candidates=candidates,
            scheme=args.scheme,
            config=PlacementConfig(
                excess_reliability_limit=args.excess_limit, seed=args.seed
            ),
        )
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    result = engine.select()
    output = result.model_dump(mode="json")
    # JSON has no infinity, a certain placement reports null nines
    score = nines(result.achieved_reliability)
    output["nines"] = None if math.isinf(score) else score
    output["uniform_reliability_floor"] = engine.uniform_reliability_floor()
    print(json.dumps(output, indent=2))
    return 0 if result.feasible else 1


if __name__ == "__main__":
    sys.exit(main())
