#!/usr/bin/env python3
"""Preview the ranges unassigned node pools would receive, without writing."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List

REPO_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from capa_subnet.allocator import find_free, split_evenly  # noqa: E402
from capa_subnet.config import (  # noqa: E402
    DEFAULT_PARENT_CIDR,
    DEFAULT_SUBNET_PREFIX_LENGTH,
    AllocationSettings,
    NodePoolRecord,
    parse_cidr,
)
from capa_subnet.exceptions import SubnetOperatorError  # noqa: E402
from subnet_operator.clients.file import cluster_from_dict, pool_from_dict  # noqa: E402


LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--state",
        type=Path,
        default=Path("deploy/subnet-operator/state.json"),
        help="Path to the JSON state file shared with the agent",
    )
    parser.add_argument(
        "--parent-cidr",
        default=DEFAULT_PARENT_CIDR,
        help="Range node pool blocks are carved from",
    )
    parser.add_argument(
        "--prefix-length",
        type=int,
        default=DEFAULT_SUBNET_PREFIX_LENGTH,
        help="Prefix length of each node pool block",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args()


def load_state(path: Path) -> Dict[str, Any]:
    with path.open() as fh:
        return json.load(fh)


def plan_cluster(
    settings: AllocationSettings,
    vpc_cidr: str,
    pools: Iterable[NodePoolRecord],
) -> List[str]:
    pools = sorted(pools, key=lambda p: p.name)
    used = [parse_cidr(vpc_cidr)]
    used.extend(parse_cidr(p.assigned_cidr) for p in pools if p.assigned_cidr)

    lines = []
    for pool in pools:
        if pool.assigned_cidr:
            lines.append(f"  {pool.name}: {pool.assigned_cidr} (assigned)")
            continue
        if pool.deleting:
            continue
        block = find_free(settings.parent_network, settings.subnet_prefix_length, used)
        used.append(block)
        zones = ", ".join(
            f"{zone}={subnet}"
            for zone, subnet in zip(
                pool.availability_zones,
                split_evenly(block, len(pool.availability_zones)),
            )
        )
        lines.append(f"  {pool.name}: {block} (planned) {zones}")
    return lines


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    settings = AllocationSettings(
        parent_cidr=args.parent_cidr, subnet_prefix_length=args.prefix_length
    )
    state = load_state(args.state)

    pools_by_cluster: Dict[str, List[NodePoolRecord]] = defaultdict(list)
    for entry in state.get("nodePools", []):
        pool = pool_from_dict(entry)
        pools_by_cluster[pool.cluster_id].append(pool)

    status = 0
    for cluster in map(cluster_from_dict, state.get("clusters", [])):
        print(f"{cluster.cluster_id} ({cluster.vpc_id}, primary {cluster.vpc_cidr})")
        try:
            for line in plan_cluster(settings, cluster.vpc_cidr, pools_by_cluster[cluster.cluster_id]):
                print(line)
        except SubnetOperatorError as exc:
            LOG.error("cannot plan cluster %s: %s", cluster.cluster_id, exc)
            status = 1
    return status


if __name__ == "__main__":
    sys.exit(main())
