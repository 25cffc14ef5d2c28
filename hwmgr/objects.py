"""Build BMC secrets and Node custom objects from inventory records."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Tuple

from kubernetes.client import V1ObjectMeta, V1Secret

from hwmgr.errors import DecodeError
from hwmgr.state import (
    CONDITION_TRUE,
    PROVISIONED,
    REASON_COMPLETED,
    NodeRecord,
    set_status_condition,
)

HWMGMT_GROUP = "hardwaremanagement.oran.openshift.io"
HWMGMT_VERSION = "v1alpha1"
NODE_KIND = "Node"
NODE_PLURAL = "nodes"
NODEPOOL_PLURAL = "nodepools"

CLOUD_ID_LABEL = "hardwaremanagement.oran.openshift.io/cloud-id"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "oran-hwmgr-plugin-test"


def bmc_secret_name(node_name: str) -> str:
    return f"{node_name}-bmc-secret"


def decode_credentials(node_name: str, username_base64: str, password_base64: str) -> Tuple[bytes, bytes]:
    """
    Decode the base64 BMC credentials of an inventory node.

    Raises:
        DecodeError: Either value is not valid base64
    """
    decoded = []
    for field_name, value in (("username", username_base64), ("password", password_base64)):
        try:
            decoded.append(base64.b64decode(value or "", validate=True))
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"failed to decode {field_name}-base64 for node {node_name}: {e}") from e
    return decoded[0], decoded[1]


def generate_bmc_secret(node_name: str, namespace: str, username: bytes, password: bytes) -> V1Secret:
    """
    Generate the BMC credentials secret for a node.

    Secret.data holds the raw credential bytes in the API's base64 wire form.
    """
    return V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=V1ObjectMeta(
            name=bmc_secret_name(node_name),
            namespace=namespace,
            labels={MANAGED_BY_LABEL: MANAGED_BY},
        ),
        type="Opaque",
        data={
            "username": base64.b64encode(username).decode("ascii"),
            "password": base64.b64encode(password).decode("ascii"),
        },
    )


def generate_node(cloud_id: str, node_name: str, group_name: str, hw_profile: str, namespace: str) -> Dict[str, Any]:
    """Node custom object body with spec fields set and no status."""
    return {
        "apiVersion": f"{HWMGMT_GROUP}/{HWMGMT_VERSION}",
        "kind": NODE_KIND,
        "metadata": {
            "name": node_name,
            "namespace": namespace,
            "labels": {
                CLOUD_ID_LABEL: cloud_id,
                MANAGED_BY_LABEL: MANAGED_BY,
            },
        },
        "spec": {
            "nodePool": cloud_id,
            "groupName": group_name,
            "hwProfile": hw_profile,
        },
    }


def apply_node_status(node: Dict[str, Any], record: NodeRecord) -> Dict[str, Any]:
    """Fill a Node object's status from its inventory record and mark it provisioned."""
    status = node.setdefault("status", {})
    status["bmc"] = {
        "address": record.bmc.address if record.bmc else "",
        "credentialsName": bmc_secret_name(record.name),
    }
    status["bootMACAddress"] = record.boot_mac_address
    status["hostname"] = record.hostname
    status["interfaces"] = _interfaces(record)

    conditions: List[Dict[str, Any]] = status.setdefault("conditions", [])
    set_status_condition(
        conditions,
        PROVISIONED,
        REASON_COMPLETED,
        CONDITION_TRUE,
        "Provisioned",
        observed_generation=node.get("metadata", {}).get("generation"),
    )
    return node


def _interfaces(record: NodeRecord) -> List[Dict[str, str]]:
    return [iface.to_dict() for iface in record.interfaces]
