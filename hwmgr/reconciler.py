"""NodePool reconciliation: admission, progressive allocation and finalization."""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from hwmgr.allocator import AllocationEngine
from hwmgr.config import PluginConfig
from hwmgr.errors import ConflictError, InsufficientResourcesError, NotFoundError
from hwmgr.kube import HardwareManagementClient
from hwmgr.lifecycle import NodeLifecycleManager
from hwmgr.state import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    PROVISIONED,
    REASON_COMPLETED,
    REASON_FAILED,
    REASON_IN_PROGRESS,
    NodeGroupSpec,
    NodePool,
    parse_timestamp,
    set_status_condition,
)

logger = logging.getLogger(__name__)

NODEPOOL_FINALIZER = "oran-hwmgr-plugin-test.oran.openshift.io/nodepool-finalizer"


class NodePoolPhase(Enum):
    UNINITIALIZED = "Uninitialized"  # action: create
    IN_PROGRESS = "InProgress"  # action: processing
    TERMINAL = "Terminal"  # action: noop


def determine_phase(pool: NodePool) -> NodePoolPhase:
    """
    Classify a NodePool from its Provisioned condition.

    A Failed pool stays terminal until its spec changes, i.e. until
    metadata.generation moves past the condition's observedGeneration.
    """
    cond = pool.provisioned_condition()
    if cond is None:
        return NodePoolPhase.UNINITIALIZED
    if cond.get("status") == CONDITION_TRUE:
        return NodePoolPhase.TERMINAL
    if cond.get("reason") == REASON_FAILED:
        observed = cond.get("observedGeneration")
        if pool.generation is not None and observed is not None and pool.generation > observed:
            return NodePoolPhase.UNINITIALIZED
        return NodePoolPhase.TERMINAL
    return NodePoolPhase.IN_PROGRESS


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass; requeue_after=None means wait for the next event."""
    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


DONE = ReconcileResult()


class NodePoolReconciler:
    """Drives NodePool requests from creation to full allocation and back."""

    def __init__(
        self,
        hwmgmt: HardwareManagementClient,
        engine: AllocationEngine,
        lifecycle: NodeLifecycleManager,
        config: PluginConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.hwmgmt = hwmgmt
        self.engine = engine
        self.lifecycle = lifecycle
        self.config = config
        self._clock = clock

    def reconcile(self, name: str) -> ReconcileResult:
        """
        Run one reconcile pass for the named NodePool.

        Errors other than business-rule failures propagate so that the
        caller retries with backoff.
        """
        try:
            pool = self.hwmgmt.get_nodepool(name)
        except NotFoundError:
            logger.info(f"NodePool {name} not found, assuming it was deleted")
            return DONE

        logger.debug(f"[NodePool] {name}")

        if pool.deletion_timestamp:
            if pool.has_finalizer(NODEPOOL_FINALIZER):
                self.finalize(pool)
                pool.remove_finalizer(NODEPOOL_FINALIZER)
                self.hwmgmt.update_nodepool(pool)
                logger.info(f"Removed finalizer from NodePool {name}")
            return DONE

        if not pool.has_finalizer(NODEPOOL_FINALIZER):
            pool.add_finalizer(NODEPOOL_FINALIZER)
            pool = self.hwmgmt.update_nodepool(pool)

        phase = determine_phase(pool)
        if phase == NodePoolPhase.UNINITIALIZED:
            logger.info(f"Handling create NodePool request, name={name}")
            return self._handle_create(pool)
        if phase == NodePoolPhase.IN_PROGRESS:
            return self._handle_processing(pool)

        logger.debug(f"NodePool {name} is in a terminal state, nothing to do")
        return DONE

    def finalize(self, pool: NodePool) -> List[str]:
        """Tear down every node held by the pool, then drop its ledger entry."""
        logger.info(f"Finalizing NodePool {pool.name} (cloud {pool.cloud_id})")
        return self.engine.release(pool.cloud_id, teardown=self.lifecycle.deprovision)

    def _handle_create(self, pool: NodePool) -> ReconcileResult:
        try:
            self.engine.feasibility_check(pool.node_groups)
        except InsufficientResourcesError as e:
            logger.error(f"NodePool {pool.name} creation request failed: {e}")
            set_status_condition(
                pool.conditions, PROVISIONED, REASON_FAILED, CONDITION_FALSE,
                f"Creation request failed: {e}", observed_generation=pool.generation,
            )
        else:
            set_status_condition(
                pool.conditions, PROVISIONED, REASON_IN_PROGRESS, CONDITION_FALSE,
                "Handling creation", observed_generation=pool.generation,
            )

        try:
            self.hwmgmt.update_nodepool_status(pool)
        except ConflictError as e:
            logger.warning(f"Failed to update status for NodePool {pool.name}: {e}")
            return ReconcileResult(requeue_after=self.config.medium_requeue_s)
        return DONE

    def _handle_processing(self, pool: NodePool) -> ReconcileResult:
        cloud_id = pool.cloud_id
        groups = pool.node_groups
        before = copy.deepcopy(pool.obj.get("status"))

        shortfall: Optional[InsufficientResourcesError] = None
        if not self.engine.is_fully_allocated(cloud_id, groups):
            for group in groups:
                logger.debug(f"Allocating node for cloud {cloud_id}, nodegroup {group.name}")
                try:
                    self.engine.allocate_one(cloud_id, group)
                except InsufficientResourcesError as e:
                    logger.info(f"Waiting for free resources for cloud {cloud_id}, nodegroup {group.name}: {e}")
                    shortfall = e

        self._materialize(cloud_id, groups)
        pool.set_node_names(self.engine.assigned_nodes(cloud_id, groups))

        if self.engine.is_fully_allocated(cloud_id, groups):
            logger.info(f"NodePool request is fully allocated, name={pool.name}")
            set_status_condition(
                pool.conditions, PROVISIONED, REASON_COMPLETED, CONDITION_TRUE,
                "Created", observed_generation=pool.generation,
            )
            result = DONE
        else:
            message = "Handling creation"
            if shortfall is not None:
                message = f"Waiting for free resources: profile {shortfall.profile}"
                self._warn_if_starved(pool, shortfall)
            logger.info(f"NodePool request in progress, name={pool.name}")
            set_status_condition(
                pool.conditions, PROVISIONED, REASON_IN_PROGRESS, CONDITION_FALSE,
                message, observed_generation=pool.generation,
            )
            result = ReconcileResult(requeue_after=self.config.short_requeue_s)

        if pool.obj.get("status") != before:
            self.hwmgmt.update_nodepool_status(pool)
        return result

    def _materialize(self, cloud_id: str, groups: List[NodeGroupSpec]) -> None:
        """Provision every ledger-held node that lacks a provisioned Node object."""
        snapshot = self.engine.snapshot()
        cloud = snapshot.ledger.find(cloud_id)
        if cloud is None:
            return
        for group in groups:
            for node_name in cloud.nodegroups.get(group.name, []):
                if self.lifecycle.is_provisioned(node_name):
                    continue
                record = snapshot.catalog.nodes.get(node_name)
                if record is None:
                    raise NotFoundError(f"unable to find inventory record for node {node_name}")
                self.lifecycle.provision(cloud_id, node_name, group.name, group.hw_profile, record)

    def _warn_if_starved(self, pool: NodePool, shortfall: InsufficientResourcesError) -> None:
        cond = pool.provisioned_condition() or {}
        since = parse_timestamp(cond.get("lastTransitionTime"))
        if since is None:
            return
        waited = self._clock() - since.timestamp()
        if waited > self.config.shortfall_warning_s:
            logger.warning(
                f"NodePool {pool.name} has waited {waited:.0f}s for free resources "
                f"in hardware profile {shortfall.profile}"
            )
