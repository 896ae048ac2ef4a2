"""
HAProxy config renderer.

Renders haproxy.cfg through a Jinja2 template. The template only sees a
fully resolved context built from the model and the static tunables, so
identical input renders byte-identical text.

Template context:
    config    ← HAProxyTunables as a flat dict
    services  ← [{key, namespace, name, type, bind_address,
                  ports: [{name, protocol, mode, bind_port, backend_port, valid, reason}]}]
    nodes     ← [{name, address}], ordered by node name

The default template (templates/haproxy.cfg.j2) can be replaced with
CONFIG_TEMPLATE to add stats, logging or ACL sections.
"""

import dataclasses
import hashlib
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence

import jinja2

from .config import HAProxyTunables
from .model import BackendNode, ExposedPort, RenderedConfig, ServiceExposure

logger = logging.getLogger("haproxy_lb")

DEFAULT_TEMPLATE = os.path.join(os.path.dirname(__file__), "templates", "haproxy.cfg.j2")


class RenderError(RuntimeError):
    """The config template could not be loaded or rendered."""


def sanitize_name(name: str) -> str:
    """Replace characters HAProxy does not accept in proxy/server names."""
    return re.sub(r"[^a-zA-Z0-9_.:-]", "_", name)


def proxy_name(exposure: ServiceExposure, port: ExposedPort) -> str:
    return sanitize_name(
        f"{exposure.namespace}-{exposure.name}-{port.protocol}-{port.bind_port}"
    )


def _load_template(path: str) -> jinja2.Template:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(os.path.dirname(os.path.abspath(path))),
        undefined=jinja2.StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False,
    )
    try:
        return env.get_template(os.path.basename(path))
    except jinja2.TemplateError as e:
        raise RenderError(f"cannot load template {path}: {e}") from e


class HAProxyRenderer:
    """Renders the model into an HAProxy configuration."""

    def __init__(self, tunables: HAProxyTunables, template_path: Optional[str] = None) -> None:
        self._config = dataclasses.asdict(tunables)
        self._template_path = template_path or DEFAULT_TEMPLATE
        self._template = _load_template(self._template_path)
        logger.debug(f"HAProxyRenderer initialized: template={self._template_path}")

    # ── Context ───────────────────────────────────────────────

    @staticmethod
    def _service_context(exposure: ServiceExposure) -> Dict[str, Any]:
        return {
            "key": exposure.key,
            "namespace": exposure.namespace,
            "name": exposure.name,
            "type": exposure.service_type,
            "bind_address": exposure.bind_address,
            "ports": [
                {
                    "name": proxy_name(exposure, port),
                    "protocol": port.protocol,
                    "mode": "http" if port.protocol == "http" else "tcp",
                    "bind_port": port.bind_port,
                    "backend_port": port.backend_port,
                    "valid": port.valid,
                    "reason": port.reason,
                }
                for port in exposure.ports
            ],
        }

    def context(
        self,
        exposures: Sequence[ServiceExposure],
        backends: Sequence[BackendNode],
    ) -> Dict[str, Any]:
        ordered = sorted(backends, key=lambda n: (n.name, n.address))
        nodes: List[Dict[str, str]] = [
            {"name": sanitize_name(n.name), "address": n.address} for n in ordered
        ]
        return {
            "config": dict(self._config),
            "services": [self._service_context(e) for e in exposures],
            "nodes": nodes,
        }

    # ── Public API ────────────────────────────────────────────

    def render(
        self,
        exposures: Sequence[ServiceExposure],
        backends: Sequence[BackendNode],
    ) -> RenderedConfig:
        """Render the full configuration. Raises RenderError on template errors."""
        ctx = self.context(exposures, backends)
        try:
            text = self._template.render(**ctx)
        except jinja2.TemplateError as e:
            raise RenderError(f"template {self._template_path} failed: {e}") from e

        text = text.rstrip("\n") + "\n"
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        logger.debug(
            f"render: {len(ctx['services'])} exposures, {len(ctx['nodes'])} backends, "
            f"{len(text)} bytes, digest={digest[:12]}"
        )
        return RenderedConfig(text=text, digest=digest)
