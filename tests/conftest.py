import copy
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
import yaml
from kubernetes.client import V1ConfigMap, V1ObjectMeta
from kubernetes.client.exceptions import ApiException

from hwmgr.allocator import AllocationEngine
from hwmgr.config import PluginConfig
from hwmgr.kube import HardwareManagementClient
from hwmgr.lifecycle import NodeLifecycleManager
from hwmgr.reconciler import NodePoolReconciler
from hwmgr.store import ConfigMapDocumentStore, InventoryStore

NAMESPACE = "hwmgr-test"
HWMGMT_API_VERSION = "hardwaremanagement.oran.openshift.io/v1alpha1"

# admin / secret
USERNAME_B64 = "YWRtaW4="
PASSWORD_B64 = "c2VjcmV0"


def make_node_entry(profile: str, index: int, username: str = USERNAME_B64, password: str = PASSWORD_B64) -> Dict[str, Any]:
    return {
        "hwprofile": profile,
        "bmc": {
            "address": f"redfish+https://10.0.0.{index}/redfish/v1/Systems/1",
            "username-base64": username,
            "password-base64": password,
        },
        "interfaces": [
            {"name": "eno1", "label": "base-interface", "macAddress": f"aa:bb:cc:00:00:{index:02x}"},
            {"name": "eno2", "label": "bootable-interface", "macAddress": f"aa:bb:cc:00:01:{index:02x}"},
        ],
        "hostname": f"host-{index}.example.com",
    }


def default_resources() -> Dict[str, Any]:
    return {
        "hwprofiles": ["P", "Q", "BAD"],
        "nodes": {
            "n1": make_node_entry("P", 2),
            "n0": make_node_entry("P", 1),
            "q0": make_node_entry("Q", 3),
            "bad0": make_node_entry("BAD", 4, username="not base64!"),
        },
    }


def nodelist_data(resources: Optional[Dict[str, Any]] = None, allocations: Optional[str] = None) -> Dict[str, str]:
    data = {"resources": yaml.safe_dump(resources if resources is not None else default_resources())}
    if allocations is not None:
        data["allocations"] = allocations
    return data


class _FailureInjector:
    """Queue ApiExceptions to be raised by the next matching fake call."""

    def __init__(self) -> None:
        self._failures: List[Tuple[str, Optional[str], Exception]] = []

    def fail(self, method: str, exc: Exception, plural: Optional[str] = None) -> None:
        self._failures.append((method, plural, exc))

    def _maybe_fail(self, method: str, plural: Optional[str] = None) -> None:
        for i, (m, p, exc) in enumerate(self._failures):
            if m == method and (p is None or p == plural):
                del self._failures[i]
                raise exc


class FakeCoreV1Api(_FailureInjector):
    """ConfigMaps and Secrets with resourceVersion semantics."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.config_maps: Dict[str, V1ConfigMap] = {}
        self.secrets: Dict[str, Any] = {}
        self.calls: List[str] = []

    def put_config_map(self, name: str, data: Dict[str, str]) -> None:
        with self._lock:
            current = self.config_maps.get(name)
            version = int(current.metadata.resource_version) + 1 if current else 1
            self.config_maps[name] = V1ConfigMap(
                metadata=V1ObjectMeta(name=name, namespace=NAMESPACE, resource_version=str(version)),
                data=dict(data),
            )

    def read_namespaced_config_map(self, name: str, namespace: str) -> V1ConfigMap:
        with self._lock:
            self.calls.append("read_namespaced_config_map")
            self._maybe_fail("read_namespaced_config_map")
            if name not in self.config_maps:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(self.config_maps[name])

    def replace_namespaced_config_map(self, name: str, namespace: str, body: V1ConfigMap) -> V1ConfigMap:
        with self._lock:
            self.calls.append("replace_namespaced_config_map")
            self._maybe_fail("replace_namespaced_config_map")
            current = self.config_maps.get(name)
            if current is None:
                raise ApiException(status=404, reason="Not Found")
            if body.metadata.resource_version != current.metadata.resource_version:
                raise ApiException(status=409, reason="Conflict")
            stored = V1ConfigMap(
                metadata=V1ObjectMeta(
                    name=name,
                    namespace=namespace,
                    resource_version=str(int(current.metadata.resource_version) + 1),
                ),
                data=dict(body.data or {}),
            )
            self.config_maps[name] = stored
            return copy.deepcopy(stored)

    def create_namespaced_secret(self, namespace: str, body: Any) -> Any:
        with self._lock:
            self.calls.append("create_namespaced_secret")
            self._maybe_fail("create_namespaced_secret")
            if body.metadata.name in self.secrets:
                raise ApiException(status=409, reason="AlreadyExists")
            self.secrets[body.metadata.name] = copy.deepcopy(body)
            return body

    def replace_namespaced_secret(self, name: str, namespace: str, body: Any) -> Any:
        with self._lock:
            self.calls.append("replace_namespaced_secret")
            self._maybe_fail("replace_namespaced_secret")
            if name not in self.secrets:
                raise ApiException(status=404, reason="Not Found")
            self.secrets[name] = copy.deepcopy(body)
            return body

    def delete_namespaced_secret(self, name: str, namespace: str) -> None:
        with self._lock:
            self.calls.append("delete_namespaced_secret")
            self._maybe_fail("delete_namespaced_secret")
            if name not in self.secrets:
                raise ApiException(status=404, reason="Not Found")
            del self.secrets[name]


class FakeCustomObjectsApi(_FailureInjector):
    """
    Namespaced custom objects with a status subresource, generation
    tracking and finalizer-aware deletion.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._rv = 0

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def _get(self, plural: str, name: str) -> Dict[str, Any]:
        obj = self.objects.get((plural, name))
        if obj is None:
            raise ApiException(status=404, reason="Not Found")
        return obj

    def _check_rv(self, body: Dict[str, Any], current: Dict[str, Any]) -> None:
        rv = body.get("metadata", {}).get("resourceVersion")
        if rv is not None and rv != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        with self._lock:
            self._maybe_fail("get_namespaced_custom_object", plural)
            return copy.deepcopy(self._get(plural, name))

    def list_namespaced_custom_object(self, group, version, namespace, plural, **kwargs):
        with self._lock:
            items = [copy.deepcopy(o) for (p, _), o in sorted(self.objects.items()) if p == plural]
            return {"items": items}

    def create_namespaced_custom_object(self, group, version, namespace, plural, body):
        with self._lock:
            self._maybe_fail("create_namespaced_custom_object", plural)
            name = body["metadata"]["name"]
            if (plural, name) in self.objects:
                raise ApiException(status=409, reason="AlreadyExists")
            obj = copy.deepcopy(body)
            obj.pop("status", None)
            obj["metadata"]["resourceVersion"] = self._next_rv()
            obj["metadata"]["generation"] = 1
            self.objects[(plural, name)] = obj
            return copy.deepcopy(obj)

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        with self._lock:
            self._maybe_fail("replace_namespaced_custom_object", plural)
            current = self._get(plural, name)
            self._check_rv(body, current)
            obj = copy.deepcopy(body)
            obj["metadata"]["generation"] = current["metadata"]["generation"]
            if obj.get("spec") != current.get("spec"):
                obj["metadata"]["generation"] += 1
            if "deletionTimestamp" in current["metadata"]:
                obj["metadata"]["deletionTimestamp"] = current["metadata"]["deletionTimestamp"]
            else:
                obj["metadata"].pop("deletionTimestamp", None)
            if "status" in current:
                obj["status"] = copy.deepcopy(current["status"])
            else:
                obj.pop("status", None)
            obj["metadata"]["resourceVersion"] = self._next_rv()
            if obj["metadata"].get("deletionTimestamp") and not obj["metadata"].get("finalizers"):
                del self.objects[(plural, name)]
            else:
                self.objects[(plural, name)] = obj
            return copy.deepcopy(obj)

    def replace_namespaced_custom_object_status(self, group, version, namespace, plural, name, body):
        with self._lock:
            self._maybe_fail("replace_namespaced_custom_object_status", plural)
            current = self._get(plural, name)
            self._check_rv(body, current)
            current["status"] = copy.deepcopy(body.get("status", {}))
            current["metadata"]["resourceVersion"] = self._next_rv()
            return copy.deepcopy(current)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        with self._lock:
            self._maybe_fail("delete_namespaced_custom_object", plural)
            current = self._get(plural, name)
            if current["metadata"].get("finalizers"):
                current["metadata"].setdefault("deletionTimestamp", "2026-01-01T00:00:00Z")
                current["metadata"]["resourceVersion"] = self._next_rv()
            else:
                del self.objects[(plural, name)]
            return {"status": "Success"}

    # -------- test helpers --------

    def stored(self, plural: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self.objects.get((plural, name))
        return copy.deepcopy(obj) if obj is not None else None

    def names(self, plural: str) -> List[str]:
        return sorted(n for p, n in self.objects if p == plural)


@pytest.fixture
def core_api():
    api = FakeCoreV1Api()
    api.put_config_map("nodelist", nodelist_data())
    return api


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()


@pytest.fixture
def config():
    return PluginConfig(namespace=NAMESPACE, short_requeue_s=15.0, medium_requeue_s=60.0)


@pytest.fixture
def inventory(core_api):
    return InventoryStore(ConfigMapDocumentStore(core_api, NAMESPACE), name="nodelist")


@pytest.fixture
def engine(inventory):
    return AllocationEngine(inventory, conflict_retries=5)


@pytest.fixture
def hwmgmt(custom_api):
    return HardwareManagementClient(custom_api, NAMESPACE)


@pytest.fixture
def lifecycle(core_api, hwmgmt):
    return NodeLifecycleManager(core_api, hwmgmt, NAMESPACE)


@pytest.fixture
def reconciler(hwmgmt, engine, lifecycle, config):
    return NodePoolReconciler(hwmgmt, engine, lifecycle, config)


@pytest.fixture
def create_nodepool(custom_api):
    """Create a NodePool custom object: create_nodepool(name, cloud_id, [(group, profile, size), ...])."""

    def _create(name: str, cloud_id: str, groups) -> Dict[str, Any]:
        body = {
            "apiVersion": HWMGMT_API_VERSION,
            "kind": "NodePool",
            "metadata": {"name": name, "namespace": NAMESPACE},
            "spec": {
                "cloudID": cloud_id,
                "nodeGroup": [{"name": g, "hwProfile": p, "size": s} for g, p, s in groups],
            },
        }
        return custom_api.create_namespaced_custom_object(
            group="hardwaremanagement.oran.openshift.io",
            version="v1alpha1",
            namespace=NAMESPACE,
            plural="nodepools",
            body=body,
        )

    return _create


def delete_nodepool(custom_api: FakeCustomObjectsApi, name: str) -> None:
    custom_api.delete_namespaced_custom_object(
        group="hardwaremanagement.oran.openshift.io",
        version="v1alpha1",
        namespace=NAMESPACE,
        plural="nodepools",
        name=name,
    )
