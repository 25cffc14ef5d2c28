from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client

from hwmgr.allocator import AllocationEngine
from hwmgr.api import create_app
from hwmgr.config import PluginConfig
from hwmgr.controller import NodePoolController
from hwmgr.kube import HardwareManagementClient, load_kube_config
from hwmgr.lifecycle import NodeLifecycleManager
from hwmgr.reconciler import NodePoolReconciler
from hwmgr.store import ConfigMapDocumentStore, InventoryStore

logger = logging.getLogger(__name__)


def build_app(config: Optional[PluginConfig] = None):
	"""Wire the store, engine, lifecycle manager, reconciler and controller into the Flask app."""
	config = config or PluginConfig.from_env()
	logging.basicConfig(
		level=getattr(logging, config.log_level, logging.INFO),
		format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
	)

	load_kube_config()
	core_api = client.CoreV1Api()
	hwmgmt = HardwareManagementClient(client.CustomObjectsApi(), config.namespace)

	inventory = InventoryStore(ConfigMapDocumentStore(core_api, config.namespace), name=config.nodelist_name)
	engine = AllocationEngine(
		inventory,
		conflict_retries=config.conflict_retries,
		allocation_delay_s=config.allocation_delay_s,
	)
	lifecycle = NodeLifecycleManager(core_api, hwmgmt, config.namespace)
	reconciler = NodePoolReconciler(hwmgmt, engine, lifecycle, config)
	controller = NodePoolController(reconciler, hwmgmt, config)

	logger.info(f"Hardware manager configured for namespace {config.namespace}, inventory {config.nodelist_name}")
	return create_app(inventory, controller=controller)


# Build app at module level (for gunicorn); the controller is started in
# post_worker_init so that only the serving worker runs it
app = build_app()


if __name__ == "__main__":
	app.config['controller'].start()
	try:
		app.run(host="0.0.0.0", port=8080)
	finally:
		app.config['controller'].stop()
