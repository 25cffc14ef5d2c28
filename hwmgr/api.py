from __future__ import annotations

import logging
from typing import Any, Optional

from flask import Flask, jsonify

from hwmgr.allocator import free_nodes
from hwmgr.controller import NodePoolController
from hwmgr.errors import NotFoundError, ParseError
from hwmgr.store import InventoryStore

logger = logging.getLogger(__name__)


def create_app(inventory: InventoryStore, controller: Optional[NodePoolController] = None) -> Flask:
	app = Flask(__name__)
	# Store collaborators in app config so they are reachable from gunicorn hooks
	app.config['inventory'] = inventory
	app.config['controller'] = controller

	def load_snapshot():
		try:
			return app.config['inventory'].load(), None
		except NotFoundError as e:
			return None, (jsonify({"error": str(e)}), 404)
		except ParseError as e:
			logger.error(f"Inventory is malformed: {e}")
			return None, (jsonify({"error": "inventory is malformed"}), 500)

	@app.get("/healthz")
	def healthz() -> Any:
		return jsonify({"status": "ok"})

	@app.get("/readyz")
	def readyz() -> Any:
		ctrl = app.config['controller']
		if ctrl is None or not ctrl.running:
			return jsonify({"status": "not ready"}), 503
		return jsonify({"status": "ready", "queued": len(ctrl.queue)})

	@app.get("/inventory")
	def inventory_view() -> Any:
		snapshot, error = load_snapshot()
		if error:
			return error
		catalog, ledger = snapshot.catalog, snapshot.ledger
		profiles = sorted(set(catalog.hwprofiles) | {n.hwprofile for n in catalog.nodes.values()})
		return jsonify({
			"profiles": catalog.hwprofiles,
			"nodes": {name: catalog.nodes[name].hwprofile for name in catalog.node_names()},
			"free": {profile: free_nodes(catalog, ledger, profile) for profile in profiles},
			"allocations": {cloud.cloud_id: cloud.nodegroups for cloud in ledger.clouds},
		})

	@app.get("/nodepools/<cloud_id>/allocations")
	def cloud_allocations(cloud_id: str) -> Any:
		snapshot, error = load_snapshot()
		if error:
			return error
		cloud = snapshot.ledger.find(cloud_id)
		if cloud is None:
			return jsonify({"error": f"no allocations for cloud {cloud_id}"}), 404
		return jsonify({
			"cloudID": cloud.cloud_id,
			"nodegroups": cloud.nodegroups,
			"nodeNames": sorted(cloud.node_names()),
		})

	return app
