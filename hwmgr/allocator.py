"""Allocation engine: turns the inventory catalog and ledger into node assignments."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from hwmgr.errors import ConflictError, InsufficientResourcesError, NotFoundError
from hwmgr.state import AllocationLedger, HardwareCatalog, NodeGroupSpec
from hwmgr.store import InventorySnapshot, InventoryStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def free_nodes(catalog: HardwareCatalog, ledger: AllocationLedger, profile: str) -> List[str]:
    """
    Nodes of a hardware profile that no cloud holds.

    Returns:
        Node names in selection order (sorted by name); empty if none are free
    """
    in_use = ledger.allocated_names()
    return [name for name in catalog.nodes_with_profile(profile) if name not in in_use]


def check_feasibility(catalog: HardwareCatalog, ledger: AllocationLedger, groups: Iterable[NodeGroupSpec]) -> None:
    """
    Verify the free inventory can cover every group.

    Groups sharing a hardware profile are counted together.

    Raises:
        InsufficientResourcesError: For the first group whose profile is over-committed
    """
    requested: Dict[str, int] = {}
    for group in groups:
        requested[group.hw_profile] = requested.get(group.hw_profile, 0) + group.size
        available = len(free_nodes(catalog, ledger, group.hw_profile))
        if requested[group.hw_profile] > available:
            raise InsufficientResourcesError(group.hw_profile, requested[group.hw_profile], available)


def group_is_full(ledger: AllocationLedger, cloud_id: str, group: NodeGroupSpec) -> bool:
    cloud = ledger.find(cloud_id)
    if cloud is None:
        return False
    return len(cloud.nodegroups.get(group.name, [])) >= group.size


@dataclass
class Allocation:
    """A node reserved for a cloud's node group by one allocation step."""
    cloud_id: str
    group_name: str
    node_name: str


class AllocationEngine:
    """Allocates and releases inventory nodes with optimistic read-modify-write cycles."""

    def __init__(
        self,
        inventory: InventoryStore,
        conflict_retries: int = 10,
        allocation_delay_s: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the engine.

        Args:
            inventory: Store holding the catalog and ledger
            conflict_retries: Attempts per operation before a ConflictError escapes
            allocation_delay_s: Artificial latency before each allocation step
            sleep: Sleep function (replaceable in tests)
        """
        self.inventory = inventory
        self.conflict_retries = max(1, conflict_retries)
        self.allocation_delay_s = allocation_delay_s
        self._sleep = sleep

    def _retry_on_conflict(self, action: str, attempt: Callable[[], T]) -> T:
        for i in range(1, self.conflict_retries + 1):
            try:
                return attempt()
            except ConflictError as e:
                if i == self.conflict_retries:
                    logger.error(f"{action}: giving up after {i} conflicting writes")
                    raise
                logger.debug(f"{action}: conflicting write ({e}), retrying from a fresh read")

    def snapshot(self) -> InventorySnapshot:
        return self.inventory.load()

    def feasibility_check(self, groups: Iterable[NodeGroupSpec]) -> None:
        """Admission check against the current inventory. Performs no mutation."""
        snapshot = self.inventory.load()
        check_feasibility(snapshot.catalog, snapshot.ledger, groups)

    def allocate_one(self, cloud_id: str, group: NodeGroupSpec) -> Optional[Allocation]:
        """
        Reserve at most one node for a group and persist the ledger.

        Returns:
            The new Allocation, or None if the group already has its requested size

        Raises:
            InsufficientResourcesError: No free node has the group's profile
            NotFoundError: The chosen node has no catalog record
            ConflictError: Retries exhausted against concurrent writers
        """
        if self.allocation_delay_s > 0:
            self._sleep(self.allocation_delay_s)

        def attempt() -> Optional[Allocation]:
            snapshot = self.inventory.load()
            if group_is_full(snapshot.ledger, cloud_id, group):
                logger.debug(f"nodegroup {group.name} of {cloud_id} is fully allocated")
                return None

            candidates = free_nodes(snapshot.catalog, snapshot.ledger, group.hw_profile)
            if not candidates:
                assigned = snapshot.ledger.find(cloud_id)
                held = len(assigned.nodegroups.get(group.name, [])) if assigned else 0
                raise InsufficientResourcesError(group.hw_profile, group.size - held, 0)

            node_name = candidates[0]
            if node_name not in snapshot.catalog.nodes:
                raise NotFoundError(f"unable to find inventory record for node {node_name}")

            cloud = snapshot.ledger.find_or_create(cloud_id)
            cloud.nodegroups.setdefault(group.name, []).append(node_name)
            self.inventory.save(snapshot)

            logger.info(f"Allocated node {node_name} to cloud {cloud_id}, nodegroup {group.name}")
            return Allocation(cloud_id=cloud_id, group_name=group.name, node_name=node_name)

        return self._retry_on_conflict(f"allocate {cloud_id}/{group.name}", attempt)

    def is_fully_allocated(self, cloud_id: str, groups: Iterable[NodeGroupSpec]) -> bool:
        ledger = self.inventory.load().ledger
        if ledger.find(cloud_id) is None:
            return False
        return all(group_is_full(ledger, cloud_id, group) for group in groups)

    def assignments(self, cloud_id: str) -> Dict[str, List[str]]:
        """Group name -> node names currently held by a cloud."""
        cloud = self.inventory.load().ledger.find(cloud_id)
        if cloud is None:
            return {}
        return {name: list(nodes) for name, nodes in cloud.nodegroups.items()}

    def assigned_nodes(self, cloud_id: str, groups: Iterable[NodeGroupSpec]) -> List[str]:
        """Sorted node names held by the cloud across the given groups."""
        held = self.assignments(cloud_id)
        names: List[str] = []
        for group in groups:
            names.extend(held.get(group.name, []))
        return sorted(names)

    def release(self, cloud_id: str, teardown: Optional[Callable[[str], None]] = None) -> List[str]:
        """
        Return every node held by a cloud to the free pool.

        Each node is passed to teardown before the ledger entry is removed, so
        a teardown failure leaves the allocation recorded for the next attempt.

        Returns:
            Names of the released nodes (empty if the cloud held nothing)
        """
        def attempt() -> List[str]:
            snapshot = self.inventory.load()
            cloud = snapshot.ledger.find(cloud_id)
            if cloud is None:
                logger.info(f"No allocated nodes found for cloud {cloud_id}")
                return []

            released = cloud.node_names()
            if teardown is not None:
                for node_name in released:
                    teardown(node_name)

            snapshot.ledger.remove(cloud_id)
            self.inventory.save(snapshot)
            logger.info(f"Released {len(released)} node(s) from cloud {cloud_id}: {released}")
            return released

        return self._retry_on_conflict(f"release {cloud_id}", attempt)
