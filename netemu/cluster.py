"""Cluster capability used by the topology manager, and its Kubernetes implementation."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from kubernetes import client, config, watch
from kubernetes.client import ApiClient, V1Namespace, V1ObjectMeta
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream
from urllib3.exceptions import ProtocolError, ReadTimeoutError

from netemu.errors import OperationCancelled
from netemu.pod_gen import generate_pod_for_node, generate_service_for_node
from netemu.settings import Settings, get_settings
from netemu.topology import Node, ServicePort, ServiceRecord

logger = logging.getLogger(__name__)

# meshnet Topology custom resource
MESHNET_GROUP = "networkop.co.uk"
MESHNET_VERSION = "v1beta1"
MESHNET_PLURAL = "topologies"


@dataclass
class ClusterOptions:
	"""Construction options for a topology manager; each may be set on its own."""
	cluster_config: Optional[client.Configuration] = None
	kube_client: Optional[client.CoreV1Api] = None
	topo_client: Optional[client.CustomObjectsApi] = None
	cluster: Optional["Cluster"] = None


class Cluster(ABC):
	"""Narrow view of the cluster a topology manager needs.

	Every topology lives in its own namespace named after the topology.
	"""

	@abstractmethod
	def topology_exists(self, topology: str) -> bool:
		raise NotImplementedError

	@abstractmethod
	def create_namespace(self, topology: str) -> None:
		raise NotImplementedError

	@abstractmethod
	def delete_namespace(self, topology: str) -> None:
		raise NotImplementedError

	@abstractmethod
	def create_link_specs(self, topology: str, specs: List[Dict[str, Any]]) -> None:
		raise NotImplementedError

	@abstractmethod
	def delete_link_specs(self, topology: str, names: List[str]) -> None:
		raise NotImplementedError

	@abstractmethod
	def list_link_specs(self, topology: str) -> List[Dict[str, Any]]:
		raise NotImplementedError

	@abstractmethod
	def create_node(self, topology: str, node: Node) -> None:
		raise NotImplementedError

	@abstractmethod
	def delete_node(self, topology: str, node_name: str) -> None:
		raise NotImplementedError

	@abstractmethod
	def node_phase(self, topology: str, node_name: str) -> Optional[str]:
		"""Current pod phase of the node, None if its pod does not exist."""
		raise NotImplementedError

	@abstractmethod
	def node_services(self, topology: str, node_name: str) -> List[ServiceRecord]:
		raise NotImplementedError

	@abstractmethod
	def watch_node_phases(self, topology: str, cancel: threading.Event) -> Iterator[Tuple[str, Optional[str]]]:
		"""Yield (node name, pod phase) pairs until cancel is set."""
		raise NotImplementedError

	@abstractmethod
	def exec_config(
		self,
		topology: str,
		node_name: str,
		data: bytes,
		path: str,
		cancel: Optional[threading.Event] = None,
	) -> None:
		raise NotImplementedError


def service_record(svc: client.V1Service) -> ServiceRecord:
	"""Convert a V1Service into a ServiceRecord."""
	ports = []
	for p in (svc.spec.ports or []):
		target = p.target_port if isinstance(p.target_port, int) else 0
		ports.append(ServicePort(
			port=p.port,
			node_port=p.node_port or 0,
			name=p.name or "",
			target_port=target,
		))

	ingress: List[str] = []
	lb = svc.status.load_balancer if svc.status else None
	for entry in (lb.ingress if lb and lb.ingress else []):
		if entry.ip or entry.hostname:
			ingress.append(entry.ip or entry.hostname)

	return ServiceRecord(cluster_ip=svc.spec.cluster_ip or "", ports=ports, ingress_ips=ingress)


class KubeCluster(Cluster):
	"""Cluster backed by the Kubernetes API.

	Clients are created lazily: constructing a KubeCluster never loads a
	kubeconfig or talks to the API server.
	"""

	def __init__(self, options: Optional[ClusterOptions] = None, settings: Optional[Settings] = None) -> None:
		self.options = options or ClusterOptions()
		self.settings = settings or get_settings()
		self._api_client: Optional[ApiClient] = None
		self._core = self.options.kube_client
		self._custom = self.options.topo_client

	def _client(self) -> ApiClient:
		if self._api_client is not None:
			return self._api_client

		if self.options.cluster_config is not None:
			self._api_client = ApiClient(configuration=self.options.cluster_config)
			return self._api_client

		try:
			config.load_incluster_config()
			logger.info("Loaded in-cluster Kubernetes config")
		except config.ConfigException:
			config.load_kube_config(config_file=self.settings.kubeconfig)
			logger.info(f"Loaded kubeconfig {self.settings.kubeconfig or '(default)'}")
		self._api_client = ApiClient()
		return self._api_client

	@property
	def core(self) -> client.CoreV1Api:
		if self._core is None:
			self._core = client.CoreV1Api(self._client())
		return self._core

	@property
	def custom(self) -> client.CustomObjectsApi:
		if self._custom is None:
			self._custom = client.CustomObjectsApi(self._client())
		return self._custom

	def topology_exists(self, topology: str) -> bool:
		try:
			self.core.read_namespace(topology)
			return True
		except ApiException as e:
			if e.status == 404:
				return False
			raise

	def create_namespace(self, topology: str) -> None:
		body = V1Namespace(metadata=V1ObjectMeta(name=topology, labels={"netemu.topology": topology}))
		self.core.create_namespace(body)
		logger.info(f"Created namespace {topology}")

	def delete_namespace(self, topology: str) -> None:
		self.core.delete_namespace(topology)
		logger.info(f"Deleted namespace {topology}")

	def create_link_specs(self, topology: str, specs: List[Dict[str, Any]]) -> None:
		for spec in specs:
			self.custom.create_namespaced_custom_object(
				group=MESHNET_GROUP,
				version=MESHNET_VERSION,
				namespace=topology,
				plural=MESHNET_PLURAL,
				body=spec,
			)
			logger.debug(f"Created meshnet topology {spec['metadata']['name']} in {topology}")

	def delete_link_specs(self, topology: str, names: List[str]) -> None:
		for name in names:
			try:
				self.custom.delete_namespaced_custom_object(
					group=MESHNET_GROUP,
					version=MESHNET_VERSION,
					namespace=topology,
					plural=MESHNET_PLURAL,
					name=name,
				)
			except ApiException as e:
				if e.status != 404:
					raise
				logger.debug(f"Meshnet topology {name} already gone from {topology}")

	def list_link_specs(self, topology: str) -> List[Dict[str, Any]]:
		resp = self.custom.list_namespaced_custom_object(
			group=MESHNET_GROUP,
			version=MESHNET_VERSION,
			namespace=topology,
			plural=MESHNET_PLURAL,
		)
		return list(resp.get("items", []))

	def create_node(self, topology: str, node: Node) -> None:
		pod = generate_pod_for_node(topology, node, default_image=self.settings.default_image)
		self.core.create_namespaced_pod(namespace=topology, body=pod)
		svc = generate_service_for_node(topology, node)
		if svc is not None:
			self.core.create_namespaced_service(namespace=topology, body=svc)
		logger.info(f"Created node {node.name} ({node.type}) in {topology}")

	def delete_node(self, topology: str, node_name: str) -> None:
		for delete, name in (
			(self.core.delete_namespaced_service, f"service-{node_name}"),
			(self.core.delete_namespaced_pod, node_name),
		):
			try:
				delete(name, topology)
			except ApiException as e:
				if e.status != 404:
					raise
				logger.debug(f"{name} already gone from {topology}")
		logger.info(f"Deleted node {node_name} from {topology}")

	def node_phase(self, topology: str, node_name: str) -> Optional[str]:
		try:
			pod = self.core.read_namespaced_pod(node_name, topology)
		except ApiException as e:
			if e.status == 404:
				return None
			raise
		return pod.status.phase if pod.status else None

	def node_services(self, topology: str, node_name: str) -> List[ServiceRecord]:
		svcs = self.core.list_namespaced_service(topology, label_selector=f"app={node_name}")
		return [service_record(s) for s in svcs.items]

	def watch_node_phases(self, topology: str, cancel: threading.Event) -> Iterator[Tuple[str, Optional[str]]]:
		w = watch.Watch()
		resource_version = None
		# An idle stream blocks in a socket read; the read timeout bounds how
		# long a cancel goes unnoticed.
		read_timeout = max(self.settings.poll_interval_s, 0.05)
		try:
			while not cancel.is_set():
				kwargs: Dict[str, Any] = {
					"namespace": topology,
					"timeout_seconds": self.settings.watch_timeout_s,
					"_request_timeout": (self.settings.watch_timeout_s, read_timeout),
				}
				if resource_version:
					kwargs["resource_version"] = resource_version

				try:
					for event in w.stream(self.core.list_namespaced_pod, **kwargs):
						if cancel.is_set():
							break

						pod = event['object']
						resource_version = pod.metadata.resource_version
						if event['type'] == 'DELETED':
							continue
						phase = pod.status.phase if pod.status else None
						logger.debug(f"Pod {pod.metadata.name} in {topology}: {event['type']} {phase}")
						yield pod.metadata.name, phase
				except (ReadTimeoutError, ProtocolError):
					# idle window; resubscribe from the last seen version
					continue
		finally:
			w.stop()
			logger.debug(f"Stopped pod watch for {topology}")

	def exec_config(
		self,
		topology: str,
		node_name: str,
		data: bytes,
		path: str,
		cancel: Optional[threading.Event] = None,
	) -> None:
		resp = stream(
			self.core.connect_get_namespaced_pod_exec,
			node_name,
			topology,
			command=["/bin/sh", "-c", f"head -c {len(data)} > {path}"],
			stderr=True,
			stdin=True,
			stdout=True,
			tty=False,
			_preload_content=False,
		)
		try:
			resp.write_stdin(data)
			while resp.is_open():
				if cancel is not None and cancel.is_set():
					raise OperationCancelled(f"config push to {node_name} cancelled")
				resp.update(timeout=1)
			if resp.returncode:
				raise RuntimeError(f"config push to {node_name} exited with {resp.returncode}: {resp.read_stderr()}")
		finally:
			resp.close()
		logger.info(f"Pushed {len(data)} bytes of config to {node_name}:{path}")
