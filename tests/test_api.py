import pytest

from conftest import FakeCoreV1Api, NAMESPACE, nodelist_data
from hwmgr.api import create_app
from hwmgr.state import NodeGroupSpec
from hwmgr.store import ConfigMapDocumentStore, InventoryStore


class StubController:
    def __init__(self, running=True, queued=0):
        self.running = running
        self.queue = [None] * queued


@pytest.fixture
def client(inventory):
    return create_app(inventory).test_client()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


@pytest.mark.parametrize("controller,code", [
    (None, 503),
    (StubController(running=False), 503),
    (StubController(running=True, queued=2), 200),
])
def test_readyz_tracks_the_controller(inventory, controller, code):
    resp = create_app(inventory, controller).test_client().get("/readyz")
    assert resp.status_code == code
    if code == 200:
        assert resp.get_json() == {"status": "ready", "queued": 2}


def test_inventory_shows_free_and_allocated_nodes(client, engine):
    engine.allocate_one("cloud-a", NodeGroupSpec(name="workers", hw_profile="P", size=2))

    resp = client.get("/inventory")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["profiles"] == ["P", "Q", "BAD"]
    assert body["nodes"]["q0"] == "Q"
    assert body["free"] == {"BAD": ["bad0"], "P": ["n1"], "Q": ["q0"]}
    assert body["allocations"] == {"cloud-a": {"workers": ["n0"]}}


def test_cloud_allocations(client, engine):
    engine.allocate_one("cloud-a", NodeGroupSpec(name="workers", hw_profile="P", size=2))
    engine.allocate_one("cloud-a", NodeGroupSpec(name="extra", hw_profile="Q", size=1))

    resp = client.get("/nodepools/cloud-a/allocations")
    assert resp.status_code == 200
    assert resp.get_json() == {
        "cloudID": "cloud-a",
        "nodegroups": {"workers": ["n0"], "extra": ["q0"]},
        "nodeNames": ["n0", "q0"],
    }

    assert client.get("/nodepools/nobody/allocations").status_code == 404


def test_missing_inventory_is_404():
    store = InventoryStore(ConfigMapDocumentStore(FakeCoreV1Api(), NAMESPACE))
    resp = create_app(store).test_client().get("/inventory")
    assert resp.status_code == 404


def test_malformed_inventory_is_500():
    api = FakeCoreV1Api()
    api.put_config_map("nodelist", {"allocations": nodelist_data()["resources"]})
    store = InventoryStore(ConfigMapDocumentStore(api, NAMESPACE))
    resp = create_app(store).test_client().get("/inventory")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "inventory is malformed"}
