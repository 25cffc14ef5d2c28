from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set
import logging

from hwmgr.errors import ParseError

logger = logging.getLogger(__name__)

BOOT_INTERFACE_LABEL = "bootable-interface"

# Condition type and reasons shared by NodePool and Node status
PROVISIONED = "Provisioned"
REASON_IN_PROGRESS = "InProgress"
REASON_COMPLETED = "Completed"
REASON_FAILED = "Failed"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"


# ----------------------------- inventory catalog -----------------------------

@dataclass
class BmcInfo:
        address: str = ""
        username_base64: str = ""
        password_base64: str = ""

        @classmethod
        def from_dict(cls, data: Dict[str, Any]) -> "BmcInfo":
                return cls(
                        address=str(data.get("address", "")),
                        username_base64=str(data.get("username-base64", "")),
                        password_base64=str(data.get("password-base64", "")),
                )

        def to_dict(self) -> Dict[str, str]:
                return {
                        "address": self.address,
                        "username-base64": self.username_base64,
                        "password-base64": self.password_base64,
                }


@dataclass
class NodeInterface:
        name: str
        label: str = ""
        mac_address: str = ""

        def to_dict(self) -> Dict[str, str]:
                return {"name": self.name, "label": self.label, "macAddress": self.mac_address}


@dataclass
class NodeRecord:
        """One physical (faked) node from the inventory catalog. Read-only."""
        name: str
        hwprofile: str
        bmc: Optional[BmcInfo] = None
        interfaces: List[NodeInterface] = field(default_factory=list)
        hostname: str = ""
        legacy_boot_mac: str = ""  # older nodelists carry bootMACAddress directly

        @property
        def boot_mac_address(self) -> str:
                for iface in self.interfaces:
                        if iface.label == BOOT_INTERFACE_LABEL:
                                return iface.mac_address
                if self.interfaces:
                        return self.interfaces[0].mac_address
                return self.legacy_boot_mac

        @classmethod
        def from_dict(cls, name: str, data: Any) -> "NodeRecord":
                if not isinstance(data, dict):
                        raise ParseError(f"node {name}: expected a mapping, got {type(data).__name__}")
                hwprofile = data.get("hwprofile")
                if not hwprofile or not isinstance(hwprofile, str):
                        raise ParseError(f"node {name}: missing hwprofile")

                bmc = None
                if data.get("bmc") is not None:
                        if not isinstance(data["bmc"], dict):
                                raise ParseError(f"node {name}: bmc must be a mapping")
                        bmc = BmcInfo.from_dict(data["bmc"])

                raw_ifaces = data.get("interfaces") or []
                if not isinstance(raw_ifaces, list):
                        raise ParseError(f"node {name}: interfaces must be a list")
                interfaces = []
                for entry in raw_ifaces:
                        if not isinstance(entry, dict) or not entry.get("name"):
                                raise ParseError(f"node {name}: malformed interface entry {entry!r}")
                        interfaces.append(NodeInterface(
                                name=str(entry["name"]),
                                label=str(entry.get("label", "")),
                                mac_address=str(entry.get("macAddress", "")),
                        ))

                return cls(
                        name=name,
                        hwprofile=hwprofile,
                        bmc=bmc,
                        interfaces=interfaces,
                        hostname=str(data.get("hostname", "")),
                        legacy_boot_mac=str(data.get("bootMACAddress", "")),
                )


@dataclass
class HardwareCatalog:
        """Hardware profiles and nodes available to allocate."""
        hwprofiles: List[str] = field(default_factory=list)
        nodes: Dict[str, NodeRecord] = field(default_factory=dict)

        @classmethod
        def from_dict(cls, data: Any) -> "HardwareCatalog":
                if not isinstance(data, dict):
                        raise ParseError("resources: expected a mapping")

                profiles = data.get("hwprofiles") or []
                if not isinstance(profiles, list) or not all(isinstance(p, str) for p in profiles):
                        raise ParseError("resources: hwprofiles must be a list of strings")

                raw_nodes = data.get("nodes") or {}
                if not isinstance(raw_nodes, dict):
                        raise ParseError("resources: nodes must be a mapping")

                nodes = {str(name): NodeRecord.from_dict(str(name), info) for name, info in raw_nodes.items()}
                known = set(profiles)
                for record in nodes.values():
                        if record.hwprofile not in known:
                                logger.warning(
                                        f"Node {record.name} uses hwprofile {record.hwprofile} "
                                        f"which is not listed in hwprofiles"
                                )
                return cls(hwprofiles=list(profiles), nodes=nodes)

        def node_names(self) -> List[str]:
                """Sorted node names, the catalog iteration order used for selection."""
                return sorted(self.nodes)

        def nodes_with_profile(self, profile: str) -> List[str]:
                return [name for name in self.node_names() if self.nodes[name].hwprofile == profile]


# ----------------------------- allocation ledger -----------------------------

@dataclass
class CloudAllocation:
        cloud_id: str
        nodegroups: Dict[str, List[str]] = field(default_factory=dict)

        def node_names(self) -> List[str]:
                names: List[str] = []
                for group in self.nodegroups.values():
                        names.extend(group)
                return names

        def to_dict(self) -> Dict[str, Any]:
                return {
                        "cloudID": self.cloud_id,
                        "nodegroups": {name: list(nodes) for name, nodes in self.nodegroups.items()},
                }


@dataclass
class AllocationLedger:
        """Which inventory nodes are held by which cloud and node group."""
        clouds: List[CloudAllocation] = field(default_factory=list)

        @classmethod
        def from_dict(cls, data: Any) -> "AllocationLedger":
                if data is None:
                        return cls()
                if not isinstance(data, dict):
                        raise ParseError("allocations: expected a mapping")
                raw_clouds = data.get("clouds") or []
                if not isinstance(raw_clouds, list):
                        raise ParseError("allocations: clouds must be a list")

                clouds = []
                for entry in raw_clouds:
                        if not isinstance(entry, dict) or not entry.get("cloudID"):
                                raise ParseError(f"allocations: malformed cloud entry {entry!r}")
                        groups = entry.get("nodegroups") or {}
                        if not isinstance(groups, dict):
                                raise ParseError(f"allocations: nodegroups of {entry['cloudID']} must be a mapping")
                        nodegroups = {}
                        for group, nodes in groups.items():
                                if not isinstance(nodes, list):
                                        raise ParseError(f"allocations: group {group} must list node names")
                                nodegroups[str(group)] = [str(n) for n in nodes]
                        clouds.append(CloudAllocation(cloud_id=str(entry["cloudID"]), nodegroups=nodegroups))
                return cls(clouds=clouds)

        def to_dict(self) -> Dict[str, Any]:
                return {"clouds": [cloud.to_dict() for cloud in self.clouds]}

        def find(self, cloud_id: str) -> Optional[CloudAllocation]:
                for cloud in self.clouds:
                        if cloud.cloud_id == cloud_id:
                                return cloud
                return None

        def find_or_create(self, cloud_id: str) -> CloudAllocation:
                cloud = self.find(cloud_id)
                if cloud is None:
                        cloud = CloudAllocation(cloud_id=cloud_id)
                        self.clouds.append(cloud)
                return cloud

        def remove(self, cloud_id: str) -> bool:
                for i, cloud in enumerate(self.clouds):
                        if cloud.cloud_id == cloud_id:
                                del self.clouds[i]
                                return True
                return False

        def allocated_names(self) -> Set[str]:
                names: Set[str] = set()
                for cloud in self.clouds:
                        names.update(cloud.node_names())
                return names


# ----------------------------- NodePool request -----------------------------

@dataclass
class NodeGroupSpec:
        name: str
        hw_profile: str
        size: int

        @classmethod
        def from_dict(cls, data: Dict[str, Any]) -> "NodeGroupSpec":
                return cls(
                        name=str(data.get("name", "")),
                        hw_profile=str(data.get("hwProfile", "")),
                        size=int(data.get("size", 0) or 0),
                )


class NodePool:
        """View over a NodePool custom object dict. Mutations write through."""

        def __init__(self, obj: Dict[str, Any]) -> None:
                self.obj = obj

        @property
        def metadata(self) -> Dict[str, Any]:
                return self.obj.setdefault("metadata", {})

        @property
        def name(self) -> str:
                return self.metadata.get("name", "")

        @property
        def generation(self) -> Optional[int]:
                return self.metadata.get("generation")

        @property
        def deletion_timestamp(self) -> Optional[str]:
                return self.metadata.get("deletionTimestamp")

        @property
        def cloud_id(self) -> str:
                return self.obj.get("spec", {}).get("cloudID", "")

        @property
        def node_groups(self) -> List[NodeGroupSpec]:
                return [NodeGroupSpec.from_dict(g) for g in self.obj.get("spec", {}).get("nodeGroup") or []]

        # -------- finalizers --------

        @property
        def finalizers(self) -> List[str]:
                return self.metadata.setdefault("finalizers", [])

        def has_finalizer(self, finalizer: str) -> bool:
                return finalizer in (self.metadata.get("finalizers") or [])

        def add_finalizer(self, finalizer: str) -> None:
                if finalizer not in self.finalizers:
                        self.finalizers.append(finalizer)

        def remove_finalizer(self, finalizer: str) -> None:
                self.metadata["finalizers"] = [f for f in self.finalizers if f != finalizer]

        # -------- status --------

        @property
        def status(self) -> Dict[str, Any]:
                return self.obj.setdefault("status", {})

        @property
        def conditions(self) -> List[Dict[str, Any]]:
                return self.status.setdefault("conditions", [])

        def provisioned_condition(self) -> Optional[Dict[str, Any]]:
                return find_status_condition(self.obj.get("status", {}).get("conditions") or [], PROVISIONED)

        @property
        def node_names(self) -> List[str]:
                return list(self.obj.get("status", {}).get("properties", {}).get("nodeNames") or [])

        def set_node_names(self, names: Iterable[str]) -> None:
                self.status.setdefault("properties", {})["nodeNames"] = sorted(names)


# ----------------------------- conditions -----------------------------

def utc_timestamp() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_status_condition(conditions: List[Dict[str, Any]], condition_type: str) -> Optional[Dict[str, Any]]:
        for cond in conditions:
                if cond.get("type") == condition_type:
                        return cond
        return None


def set_status_condition(
        conditions: List[Dict[str, Any]],
        condition_type: str,
        reason: str,
        status: str,
        message: str,
        observed_generation: Optional[int] = None,
) -> bool:
        """
        Add or update a condition in place.

        lastTransitionTime only moves when the status value changes.

        Returns:
                True if anything about the condition changed
        """
        existing = find_status_condition(conditions, condition_type)
        if existing is None:
                cond = {
                        "type": condition_type,
                        "status": status,
                        "reason": reason,
                        "message": message,
                        "lastTransitionTime": utc_timestamp(),
                }
                if observed_generation is not None:
                        cond["observedGeneration"] = observed_generation
                conditions.append(cond)
                return True

        changed = False
        if existing.get("status") != status:
                existing["status"] = status
                existing["lastTransitionTime"] = utc_timestamp()
                changed = True
        for key, value in (("reason", reason), ("message", message)):
                if existing.get(key) != value:
                        existing[key] = value
                        changed = True
        if observed_generation is not None and existing.get("observedGeneration") != observed_generation:
                existing["observedGeneration"] = observed_generation
                changed = True
        return changed


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
        if not value:
                return None
        try:
                return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)
        except ValueError:
                return None
