"""Materialize and tear down Node objects and BMC secrets for allocated nodes."""

from __future__ import annotations

import logging
from typing import Any, Dict

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from hwmgr.errors import HardwareManagerError
from hwmgr.kube import HardwareManagementClient
from hwmgr.objects import (
    apply_node_status,
    bmc_secret_name,
    decode_credentials,
    generate_bmc_secret,
    generate_node,
)
from hwmgr.state import CONDITION_TRUE, PROVISIONED, NodeRecord, find_status_condition

logger = logging.getLogger(__name__)


class NodeLifecycleManager:
    """Creates and deletes the Node object and BMC secret of one inventory node."""

    def __init__(self, core_api: client.CoreV1Api, hwmgmt: HardwareManagementClient, namespace: str) -> None:
        """
        Initialize the lifecycle manager.

        Args:
            core_api: CoreV1Api used for secrets
            hwmgmt: Client for Node custom objects
            namespace: Namespace for secrets and Node objects
        """
        self.core = core_api
        self.hwmgmt = hwmgmt
        self.namespace = namespace

    def provision(self, cloud_id: str, node_name: str, group_name: str, hw_profile: str, record: NodeRecord) -> Dict[str, Any]:
        """
        Create the BMC secret and Node object and publish the node's status.

        Safe to call again for a node left half-created by an earlier failure.

        Returns:
            The Node object after its status update

        Raises:
            DecodeError: The record's BMC credentials are not valid base64
            ApiException: A Kubernetes API call failed
        """
        self.create_bmc_secret(node_name, record)
        node = self.create_node(cloud_id, node_name, group_name, hw_profile)
        return self.update_node_status(node, record)

    def create_bmc_secret(self, node_name: str, record: NodeRecord) -> None:
        logger.info(f"Creating bmc-secret for node {node_name}")
        username, password = decode_credentials(
            node_name,
            record.bmc.username_base64 if record.bmc else "",
            record.bmc.password_base64 if record.bmc else "",
        )
        secret = generate_bmc_secret(node_name, self.namespace, username, password)
        try:
            self.core.create_namespaced_secret(namespace=self.namespace, body=secret)
        except ApiException as e:
            if e.status != 409:
                logger.error(f"Failed to create bmc-secret for node {node_name}: status={e.status}, reason={e.reason}")
                raise
            self.core.replace_namespaced_secret(
                name=bmc_secret_name(node_name), namespace=self.namespace, body=secret
            )
            logger.info(f"Updated existing bmc-secret for node {node_name}")

    def create_node(self, cloud_id: str, node_name: str, group_name: str, hw_profile: str) -> Dict[str, Any]:
        logger.info(f"Creating node {node_name} for cloud {cloud_id}, nodegroup {group_name}")
        body = generate_node(cloud_id, node_name, group_name, hw_profile, self.namespace)
        try:
            return self.hwmgmt.create_node(body)
        except ApiException as e:
            if e.status != 409:
                logger.error(f"Failed to create node {node_name}: status={e.status}, reason={e.reason}")
                raise

        existing = self.hwmgmt.get_node(node_name)
        if existing is None:
            raise HardwareManagerError(f"Node {node_name} reported as existing but could not be read")
        owner = existing.get("spec", {}).get("nodePool")
        if owner != cloud_id:
            raise HardwareManagerError(f"Node {node_name} already exists for nodepool {owner}, expected {cloud_id}")
        logger.info(f"Node {node_name} already exists, resuming provisioning")
        return existing

    def update_node_status(self, node: Dict[str, Any], record: NodeRecord) -> Dict[str, Any]:
        name = node["metadata"]["name"]
        logger.info(f"Updating status of node {name}")
        return self.hwmgmt.update_node_status(apply_node_status(node, record))

    def is_provisioned(self, node_name: str) -> bool:
        """True if the Node object exists with a true Provisioned condition."""
        node = self.hwmgmt.get_node(node_name)
        if node is None:
            return False
        cond = find_status_condition(node.get("status", {}).get("conditions") or [], PROVISIONED)
        return cond is not None and cond.get("status") == CONDITION_TRUE

    def deprovision(self, node_name: str) -> None:
        """Delete the BMC secret and then the Node object, ignoring ones already gone."""
        logger.info(f"Deleting bmc-secret and node {node_name}")
        try:
            self.core.delete_namespaced_secret(name=bmc_secret_name(node_name), namespace=self.namespace)
        except ApiException as e:
            if e.status != 404:
                logger.error(f"Failed to delete bmc-secret for node {node_name}: status={e.status}, reason={e.reason}")
                raise
            logger.debug(f"bmc-secret for node {node_name} already deleted")

        if not self.hwmgmt.delete_node(node_name):
            logger.debug(f"Node {node_name} already deleted")
