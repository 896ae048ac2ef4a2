"""
Model builder.

Turns raw Kubernetes service and node listings into the normalized model
consumed by the renderer. Pure: no I/O besides logging.

Rules:
  - only NodePort/LoadBalancer services carrying the opt-in annotation
  - bind address = bindIP annotation, else spec.loadBalancerIP
  - only tcp/http ports are routable
  - (protocol, bind address, port) is first-writer-wins in listing order;
    losers stay in the model, marked invalid
  - backends = first InternalIP of each node
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from .model import (
    EXPOSABLE_TYPES,
    REASON_CONFLICT,
    REASON_NO_BIND_ADDRESS,
    REASON_NO_NODE_PORT,
    REASON_UNSUPPORTED_PROTOCOL,
    SUPPORTED_PROTOCOLS,
    BackendNode,
    ExposedPort,
    MalformedRegistryData,
    ServiceAnnotations,
    ServiceExposure,
)
from .model import as_mapping as _mapping

logger = logging.getLogger("haproxy_lb")

Triple = Tuple[str, str, int]


# ── Shape helpers ─────────────────────────────────────────────


def _identity(record: dict, what: str) -> Tuple[str, str]:
    """Return (namespace, name) of a raw record."""
    if not isinstance(record, dict):
        raise MalformedRegistryData(f"{what} record is not an object: {record!r:.120}")
    meta = _mapping(record.get("metadata"), f"{what}.metadata")
    name = meta.get("name")
    if not name or not isinstance(name, str):
        raise MalformedRegistryData(f"{what} record without metadata.name")
    return str(meta.get("namespace") or ""), name


def service_label(service: dict) -> str:
    """Human-readable service reference for log lines."""
    meta = service.get("metadata") or {}
    return f"{meta.get('name')}.{meta.get('namespace')}.svc"


def has_ingress(service: dict) -> bool:
    status = _mapping(service.get("status"), "service.status")
    lb = _mapping(status.get("loadBalancer"), "service.status.loadBalancer")
    return bool(lb.get("ingress"))


# ── Services ──────────────────────────────────────────────────


def is_exposed(service: dict) -> bool:
    """True if the service type is exposable and the opt-in annotation is set."""
    spec = _mapping(service.get("spec"), "service.spec")
    if spec.get("type") not in EXPOSABLE_TYPES:
        return False
    return ServiceAnnotations.from_service(service).enabled


def resolve_bind_address(service: dict) -> Optional[str]:
    annotations = ServiceAnnotations.from_service(service)
    if annotations.bind_ip:
        return annotations.bind_ip
    spec = _mapping(service.get("spec"), "service.spec")
    lb_ip = str(spec.get("loadBalancerIP") or "").strip()
    return lb_ip or None


def _port_number(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedRegistryData(f"{what} is not an integer: {value!r}")
    return value


def _build_ports(
    service: dict,
    bind_address: Optional[str],
    claimed: Set[Triple],
) -> Tuple[ExposedPort, ...]:
    spec = _mapping(service.get("spec"), "service.spec")
    raw_ports = spec.get("ports") or []
    if not isinstance(raw_ports, list):
        raise MalformedRegistryData(f"{service_label(service)}: spec.ports is not a list")

    ports: List[ExposedPort] = []
    for raw_port in raw_ports:
        raw_port = _mapping(raw_port, "service.spec.ports[]")
        protocol = str(raw_port.get("protocol") or "TCP").lower()
        bind_port = _port_number(raw_port.get("port"), f"{service_label(service)} port")
        node_port = raw_port.get("nodePort")
        if node_port is not None:
            node_port = _port_number(node_port, f"{service_label(service)} nodePort")

        reason: Optional[str] = None

        if bind_address is None:
            reason = REASON_NO_BIND_ADDRESS
        else:
            triple = (protocol, bind_address, bind_port)
            if triple in claimed:
                reason = REASON_CONFLICT
                logger.warning(
                    f"Service port {protocol}:{bind_address}:{bind_port} of "
                    f"{service_label(service)} is already defined by another service"
                )
            claimed.add(triple)

            if reason is None and protocol not in SUPPORTED_PROTOCOLS:
                reason = REASON_UNSUPPORTED_PROTOCOL
                logger.warning(
                    f"Service port protocol '{protocol}' of {service_label(service)} "
                    f"is not supported by HAProxy (port {bind_port})"
                )
            if reason is None and node_port is None:
                reason = REASON_NO_NODE_PORT
                logger.warning(
                    f"Service port {bind_port} of {service_label(service)} has no nodePort"
                )

        ports.append(
            ExposedPort(
                protocol=protocol,
                bind_port=bind_port,
                backend_port=node_port,
                valid=reason is None,
                reason=reason,
            )
        )
    return tuple(ports)


def build_exposures(services: List[dict]) -> List[ServiceExposure]:
    """Select opted-in services and resolve their ports, in listing order."""
    claimed: Set[Triple] = set()
    exposures: List[ServiceExposure] = []

    for service in services:
        namespace, name = _identity(service, "service")
        if not is_exposed(service):
            logger.debug(f"build_exposures: skipping {namespace}/{name} (not opted in)")
            continue

        bind_address = resolve_bind_address(service)
        if bind_address is None:
            logger.warning(
                f"Service {service_label(service)} has no bind IP address "
                f"nor loadBalancerIP set"
            )

        spec = _mapping(service.get("spec"), "service.spec")
        exposure = ServiceExposure(
            namespace=namespace,
            name=name,
            service_type=str(spec.get("type")),
            bind_address=bind_address,
            ports=_build_ports(service, bind_address, claimed),
            has_ingress=has_ingress(service),
            raw=service,
        )
        logger.debug(
            f"build_exposures: {exposure.key} bind={bind_address} "
            f"ports={len(exposure.ports)} valid={len(exposure.valid_ports)}"
        )
        exposures.append(exposure)

    return exposures


# ── Nodes ─────────────────────────────────────────────────────


def internal_address(node: dict) -> Optional[str]:
    """First InternalIP address of a node, or None."""
    status = _mapping(node.get("status"), "node.status")
    addresses = status.get("addresses") or []
    if not isinstance(addresses, list):
        raise MalformedRegistryData("node.status.addresses is not a list")
    for entry in addresses:
        entry = _mapping(entry, "node.status.addresses[]")
        if entry.get("type") == "InternalIP" and entry.get("address"):
            return str(entry["address"])
    return None


def build_backends(nodes: List[dict]) -> List[BackendNode]:
    backends: List[BackendNode] = []
    for node in nodes:
        _, name = _identity(node, "node")
        address = internal_address(node)
        if address is None:
            logger.warning(f"Node {name} has no InternalIP address, excluded from backends")
            continue
        backends.append(BackendNode(name=name, address=address, raw=node))
    return backends


# ── Entry point ───────────────────────────────────────────────


def build(
    services: List[dict], nodes: List[dict]
) -> Tuple[List[ServiceExposure], List[BackendNode]]:
    """Build (exposures, backends) from raw listings. Raises MalformedRegistryData."""
    if not isinstance(services, list) or not isinstance(nodes, list):
        raise MalformedRegistryData("service and node listings must be lists")
    exposures = build_exposures(services)
    backends = build_backends(nodes)
    logger.debug(f"build: {len(exposures)} exposures, {len(backends)} backends")
    return exposures, backends


def summarize(exposures: List[ServiceExposure]) -> Dict[str, int]:
    """Counts of valid/invalid ports, for the cycle log line."""
    valid = sum(len(e.valid_ports) for e in exposures)
    total = sum(len(e.ports) for e in exposures)
    return {"exposures": len(exposures), "valid_ports": valid, "invalid_ports": total - valid}
