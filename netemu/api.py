from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from netemu.cluster import ClusterOptions
from netemu.errors import ServiceNotFoundError, TopologyError
from netemu.lifecycle import enrich_services
from netemu.loader import parse_topology, topology_to_dict
from netemu.manager import ManagerFactory, TopologyManager, new_topology_manager
from netemu.topology import Topology

logger = logging.getLogger(__name__)


@dataclass
class _Managed:
	manager: TopologyManager
	stop: threading.Event = field(default_factory=threading.Event)
	thread: Optional[threading.Thread] = None


def _run_watch(entry: _Managed, name: str) -> None:
	try:
		entry.manager.watch(entry.stop)
	except Exception as e:
		logger.error(f"Watch for topology {name} failed: {e}")


def _start_watch(entry: _Managed, name: str) -> None:
	entry.stop = threading.Event()
	entry.thread = threading.Thread(
		target=_run_watch,
		args=(entry, name),
		name=f"watch-{name}",
		daemon=True,
	)
	entry.thread.start()


def create_app(
	options: Optional[ClusterOptions] = None,
	manager_factory: ManagerFactory = new_topology_manager,
) -> Flask:
	app = Flask(__name__)
	# Managed topologies live in app config so every endpoint sees them
	app.config['netemu_managers'] = {}
	app.config['netemu_options'] = options or ClusterOptions()
	lock = threading.Lock()

	def managers() -> Dict[str, _Managed]:
		return app.config['netemu_managers']

	@app.errorhandler(TopologyError)
	def handle_topology_error(e: TopologyError) -> Any:
		logger.warning(f"{request.method} {request.path}: {e}")
		return jsonify({"error": str(e)}), e.status_code

	@app.post("/topology")
	def create_topology() -> Any:
		body = request.get_json(force=True)
		if not isinstance(body, dict):
			return jsonify({"error": "request body must be a JSON object"}), 400
		spec = body.get("topology")
		if not spec:
			return jsonify({"error": "missing topology"}), 400
		dry_run = bool(body.get("dry_run", False))

		topo = parse_topology(spec)
		with lock:
			if topo.name in managers():
				return jsonify({"error": f"topology {topo.name!r} is already managed"}), 409

		tm = manager_factory(topo.name, topo, app.config['netemu_options'])
		tm.load()
		if dry_run:
			return jsonify({"name": topo.name, "state": tm.topo_state().name, "dry_run": True})

		tm.push()
		entry = _Managed(manager=tm)
		with lock:
			managers()[topo.name] = entry
		_start_watch(entry, topo.name)
		return jsonify({"name": topo.name, "state": tm.topo_state().name}), 201

	@app.get("/topology")
	def list_topologies() -> Any:
		with lock:
			items = list(managers().items())
		return jsonify({
			"topologies": [
				{"name": name, "state": entry.manager.topo_state().name}
				for name, entry in sorted(items)
			]
		})

	@app.get("/topology/<name>")
	def show_topology(name: str) -> Any:
		with lock:
			entry = managers().get(name)
		if entry is None:
			return jsonify({"error": f"topology {name!r} is not managed"}), 404

		tm = entry.manager
		declared = tm.topology_proto()
		try:
			topo = enrich_services(declared, tm.resources())
		except ServiceNotFoundError as e:
			# Services are assigned asynchronously; show the declared view until then
			logger.debug(f"Services of {name} not ready: {e}")
			topo = declared

		state_map = getattr(tm, "state_map", None)
		nodes = {n: s.name for n, s in state_map.snapshot().items()} if state_map is not None else {}
		return jsonify({
			"name": name,
			"state": tm.topo_state().name,
			"nodes": nodes,
			"topology": topology_to_dict(topo),
		})

	@app.delete("/topology/<name>")
	def delete_topology(name: str) -> Any:
		with lock:
			entry = managers().get(name)

		if entry is None:
			manager_factory(name, Topology(name=name), app.config['netemu_options']).delete()
			return jsonify({"name": name, "deleted": True})

		entry.stop.set()
		if entry.thread is not None:
			entry.thread.join(timeout=5.0)
		try:
			entry.manager.delete()
		except Exception:
			# Still in the cluster: keep it managed and watched
			_start_watch(entry, name)
			raise
		with lock:
			managers().pop(name, None)
		return jsonify({"name": name, "deleted": True})

	return app
