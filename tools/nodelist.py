#!/usr/bin/env python3
"""
Inspect and render nodelist inventory manifests.

Usage:
    python tools/nodelist.py validate deploy/nodelist.yaml
    python tools/nodelist.py free deploy/nodelist.yaml --profile profile-spr-single-sno
    python tools/nodelist.py render deploy/nodelist.yaml --namespace oran-hwmgr-plugin
"""

from __future__ import annotations

import argparse
import pathlib
import sys

import yaml

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from hwmgr.allocator import free_nodes
from hwmgr.errors import HardwareManagerError
from hwmgr.objects import decode_credentials
from hwmgr.store import InventoryStore, MemoryDocumentStore, load_manifest


def _load(path: str, name: str):
    store = InventoryStore(MemoryDocumentStore({name: load_manifest(path)}), name=name)
    return store.load()


def cmd_validate(args: argparse.Namespace) -> int:
    snapshot = _load(args.manifest, args.name)
    catalog, ledger = snapshot.catalog, snapshot.ledger
    problems = []
    for name in catalog.node_names():
        record = catalog.nodes[name]
        if record.bmc is None:
            problems.append(f"{name}: no bmc section")
            continue
        try:
            decode_credentials(name, record.bmc.username_base64, record.bmc.password_base64)
        except HardwareManagerError as e:
            problems.append(str(e))
        if not record.boot_mac_address:
            problems.append(f"{name}: no boot MAC address")

    seen = {}
    for cloud in ledger.clouds:
        for group, nodes in cloud.nodegroups.items():
            for node in nodes:
                if node not in catalog.nodes:
                    problems.append(f"{cloud.cloud_id}/{group}: unknown node {node}")
                if node in seen:
                    problems.append(f"{node} allocated to both {seen[node]} and {cloud.cloud_id}/{group}")
                seen[node] = f"{cloud.cloud_id}/{group}"

    print(f"{len(catalog.nodes)} node(s), {len(catalog.hwprofiles)} profile(s), {len(ledger.clouds)} allocated cloud(s)")
    for p in problems:
        print(f"  ✗ {p}")
    return 1 if problems else 0


def cmd_free(args: argparse.Namespace) -> int:
    snapshot = _load(args.manifest, args.name)
    profiles = [args.profile] if args.profile else snapshot.catalog.hwprofiles
    for profile in profiles:
        nodes = free_nodes(snapshot.catalog, snapshot.ledger, profile)
        print(f"{profile}: {len(nodes)} free {' '.join(nodes)}".rstrip())
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    snapshot = _load(args.manifest, args.name)
    manifest = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": args.name, "namespace": args.namespace},
        "data": snapshot.document.data,
    }
    yaml.safe_dump(manifest, sys.stdout, default_flow_style=False, sort_keys=False)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--name", default="nodelist", help="ConfigMap name")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("validate", help="Parse the inventory and check credentials and allocations")
    p.add_argument("manifest")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("free", help="List free nodes per hardware profile")
    p.add_argument("manifest")
    p.add_argument("--profile")
    p.set_defaults(func=cmd_free)

    p = sub.add_parser("render", help="Print the manifest for a namespace")
    p.add_argument("manifest")
    p.add_argument("--namespace", required=True)
    p.set_defaults(func=cmd_render)

    args = parser.parse_args()
    try:
        sys.exit(args.func(args))
    except HardwareManagerError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
