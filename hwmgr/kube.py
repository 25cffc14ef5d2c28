"""Kubernetes client setup and access to hardware management custom objects."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException

from hwmgr.errors import ConflictError, NotFoundError
from hwmgr.objects import HWMGMT_GROUP, HWMGMT_VERSION, NODE_PLURAL, NODEPOOL_PLURAL
from hwmgr.state import NodePool

logger = logging.getLogger(__name__)


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


def _raise_translated(e: ApiException, what: str) -> None:
    if e.status == 404:
        raise NotFoundError(f"{what} not found") from e
    if e.status == 409:
        raise ConflictError(f"{what} was modified concurrently") from e
    logger.error(f"API call on {what} failed: status={e.status}, reason={e.reason}")
    raise e


class HardwareManagementClient:
    """Typed access to NodePool and Node custom objects in one namespace."""

    def __init__(self, custom_api: client.CustomObjectsApi, namespace: str) -> None:
        self.custom = custom_api
        self.namespace = namespace

    def _args(self, plural: str) -> Dict[str, str]:
        return {
            "group": HWMGMT_GROUP,
            "version": HWMGMT_VERSION,
            "namespace": self.namespace,
            "plural": plural,
        }

    # -------- NodePool --------

    def get_nodepool(self, name: str) -> NodePool:
        try:
            obj = self.custom.get_namespaced_custom_object(name=name, **self._args(NODEPOOL_PLURAL))
        except ApiException as e:
            _raise_translated(e, f"nodepool {self.namespace}/{name}")
        return NodePool(obj)

    def list_nodepools(self) -> List[NodePool]:
        result = self.custom.list_namespaced_custom_object(**self._args(NODEPOOL_PLURAL))
        return [NodePool(item) for item in result.get("items", [])]

    def update_nodepool(self, pool: NodePool) -> NodePool:
        """Replace the NodePool object (metadata and spec)."""
        try:
            obj = self.custom.replace_namespaced_custom_object(
                name=pool.name, body=pool.obj, **self._args(NODEPOOL_PLURAL)
            )
        except ApiException as e:
            _raise_translated(e, f"nodepool {self.namespace}/{pool.name}")
        return NodePool(obj)

    def update_nodepool_status(self, pool: NodePool) -> NodePool:
        """Replace the NodePool status subresource."""
        try:
            obj = self.custom.replace_namespaced_custom_object_status(
                name=pool.name, body=pool.obj, **self._args(NODEPOOL_PLURAL)
            )
        except ApiException as e:
            _raise_translated(e, f"nodepool {self.namespace}/{pool.name} status")
        return NodePool(obj)

    def watch_nodepools(self, w: watch.Watch, timeout_seconds: int):
        """Stream NodePool watch events until the server-side timeout."""
        return w.stream(
            self.custom.list_namespaced_custom_object,
            timeout_seconds=timeout_seconds,
            **self._args(NODEPOOL_PLURAL),
        )

    # -------- Node --------

    def get_node(self, name: str) -> Optional[Dict[str, Any]]:
        """Return the Node object, or None if it does not exist."""
        try:
            return self.custom.get_namespaced_custom_object(name=name, **self._args(NODE_PLURAL))
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def create_node(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create a Node object. ApiException 409 signals it already exists."""
        return self.custom.create_namespaced_custom_object(body=body, **self._args(NODE_PLURAL))

    def update_node_status(self, body: Dict[str, Any]) -> Dict[str, Any]:
        name = body["metadata"]["name"]
        try:
            return self.custom.replace_namespaced_custom_object_status(
                name=name, body=body, **self._args(NODE_PLURAL)
            )
        except ApiException as e:
            _raise_translated(e, f"node {self.namespace}/{name} status")

    def delete_node(self, name: str) -> bool:
        """Delete a Node object. Returns False if it was already gone."""
        try:
            self.custom.delete_namespaced_custom_object(name=name, **self._args(NODE_PLURAL))
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True
