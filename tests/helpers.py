"""Builders for raw Service and Node objects as the API server returns them."""

from haproxy_lb.model import ANNOTATION_BIND_IP, ANNOTATION_ENABLED


def make_service(
    name,
    ports,
    *,
    namespace="default",
    svc_type="LoadBalancer",
    enabled=True,
    lb_ip=None,
    bind_ip=None,
    ingress=None,
):
    """Build a raw Service object. ports: list of (protocol, port, nodePort)."""
    annotations = {}
    if enabled:
        annotations[ANNOTATION_ENABLED] = "true"
    if bind_ip:
        annotations[ANNOTATION_BIND_IP] = bind_ip
    spec = {
        "type": svc_type,
        "ports": [
            {"protocol": proto, "port": port, "nodePort": node_port}
            for proto, port, node_port in ports
        ],
    }
    if lb_ip:
        spec["loadBalancerIP"] = lb_ip
    status = {"loadBalancer": {"ingress": ingress}} if ingress else {"loadBalancer": {}}
    return {
        "metadata": {"name": name, "namespace": namespace, "annotations": annotations},
        "spec": spec,
        "status": status,
    }


def make_node(name, internal_ip=None, hostname=True):
    addresses = []
    if hostname:
        addresses.append({"type": "Hostname", "address": name})
    if internal_ip:
        addresses.append({"type": "InternalIP", "address": internal_ip})
    return {"metadata": {"name": name}, "status": {"addresses": addresses}}
