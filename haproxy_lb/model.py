"""
Cycle-scoped data model.

Everything here is rebuilt from registry data on every reconcile pass and
never mutated afterwards.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

ANNOTATION_ENABLED = "haproxy-lb.hexio.io/loadBalancer"
ANNOTATION_BIND_IP = "haproxy-lb.hexio.io/loadBalancerBindIP"

EXPOSABLE_TYPES = ("NodePort", "LoadBalancer")
SUPPORTED_PROTOCOLS = ("tcp", "http")

# Invalid-port reasons
REASON_NO_BIND_ADDRESS = "no bind address"
REASON_UNSUPPORTED_PROTOCOL = "unsupported protocol"
REASON_CONFLICT = "port conflict"
REASON_NO_NODE_PORT = "no node port"

_FALSY = ("", "false", "0", "no", "off")


class MalformedRegistryData(ValueError):
    """A registry record does not have the shape the builder relies on."""


def as_mapping(obj, what: str) -> dict:
    """Return obj as a dict (None -> {}), or raise MalformedRegistryData."""
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise MalformedRegistryData(f"{what} is not an object: {obj!r:.120}")
    return obj


@dataclass(frozen=True)
class ServiceAnnotations:
    """
    Typed view of the annotations this controller reads.

      enabled  — haproxy-lb.hexio.io/loadBalancer; absent or false-ish means
                 the service is never exposed (default: False)
      bind_ip  — haproxy-lb.hexio.io/loadBalancerBindIP; overrides
                 spec.loadBalancerIP (default: None)
    """

    enabled: bool = False
    bind_ip: Optional[str] = None

    @classmethod
    def from_service(cls, service: dict) -> "ServiceAnnotations":
        meta = as_mapping(service.get("metadata"), "service.metadata")
        annotations = as_mapping(meta.get("annotations"), "service.metadata.annotations")
        raw_enabled = str(annotations.get(ANNOTATION_ENABLED, "")).strip().lower()
        bind_ip = str(annotations.get(ANNOTATION_BIND_IP, "")).strip()
        return cls(enabled=raw_enabled not in _FALSY, bind_ip=bind_ip or None)


@dataclass(frozen=True)
class ExposedPort:
    protocol: str
    bind_port: int
    backend_port: Optional[int]
    valid: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ServiceExposure:
    namespace: str
    name: str
    service_type: str
    bind_address: Optional[str]
    ports: Tuple[ExposedPort, ...]
    has_ingress: bool
    raw: dict

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def valid_ports(self) -> Tuple[ExposedPort, ...]:
        return tuple(p for p in self.ports if p.valid)


@dataclass(frozen=True)
class BackendNode:
    name: str
    address: str
    raw: dict


@dataclass(frozen=True)
class RenderedConfig:
    text: str
    digest: str
