"""
Kubernetes API client.

Lists services and nodes, and patches service status with the observed
load-balancer ingress address. Every request is bearer-token authenticated
and bounded by REQUEST_TIMEOUT.
"""

import atexit
import base64
import logging
import os
import tempfile
from typing import List

import requests

from .config import Config

logger = logging.getLogger("haproxy_lb")


class RegistryError(RuntimeError):
    """The API server could not be reached or returned an unusable response."""


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class KubeClient:
    """Minimal Kubernetes REST client for services, nodes and service status."""

    def __init__(self, config: Config) -> None:
        self._server = config.kube_server
        self._namespace = config.namespace
        self._timeout = config.request_timeout
        self._headers = {"Authorization": f"Bearer {config.kube_token}"}
        self._verify = self._ca_bundle(config.kube_ca)
        logger.debug(
            f"KubeClient initialized: server={self._server}, "
            f"namespace={self._namespace}, verify={self._verify}"
        )

    # ── Internal ──────────────────────────────────────────────

    @staticmethod
    def _ca_bundle(ca_b64: str):
        """Decode a base64 PEM bundle into a file usable by requests' verify=."""
        if not ca_b64:
            return True
        try:
            pem = base64.b64decode(ca_b64)
        except ValueError as e:
            raise SystemExit(f"KUBE_SERVER_CA is not valid base64: {e}") from e
        with tempfile.NamedTemporaryFile(
            prefix="kube-ca-", suffix=".pem", delete=False
        ) as f:
            f.write(pem)
        atexit.register(_remove_quietly, f.name)
        return f.name

    def _list(self, path: str) -> List[dict]:
        url = f"{self._server}{path}"
        logger.debug(f"_list: GET {url}")
        try:
            r = requests.get(
                url, headers=self._headers, verify=self._verify, timeout=self._timeout
            )
            logger.debug(f"_list: {path} returned status_code={r.status_code}")
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise RegistryError(f"GET {path} failed: {e}") from e

        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise RegistryError(
                f"Unexpected API response from {path}, "
                f"received status {r.status_code}, body: {str(body)[:200]}"
            )
        return body["items"]

    # ── Public API ────────────────────────────────────────────

    def list_services(self) -> List[dict]:
        """List services in the configured namespace, in API order."""
        return self._list(f"/api/v1/namespaces/{self._namespace}/services")

    def list_nodes(self) -> List[dict]:
        """List all cluster nodes, in API order."""
        return self._list("/api/v1/nodes")

    def update_service_status(self, service: dict) -> bool:
        """Replace a service's status sub-resource with service['status']."""
        meta = service.get("metadata", {})
        name = meta.get("name")
        namespace = meta.get("namespace") or self._namespace
        path = f"/api/v1/namespaces/{namespace}/services/{name}/status"
        body = [{"op": "replace", "path": "/status", "value": service.get("status", {})}]
        headers = dict(self._headers)
        headers["Content-Type"] = "application/json-patch+json"

        logger.debug(f"update_service_status: PATCH {path}, value={body[0]['value']}")
        try:
            r = requests.patch(
                f"{self._server}{path}",
                json=body,
                headers=headers,
                verify=self._verify,
                timeout=self._timeout,
            )
            logger.debug(f"update_service_status: {path} returned status_code={r.status_code}")
            if r.status_code in (200, 201):
                return True
            logger.warning(
                f"status patch for {namespace}/{name} returned {r.status_code}: {r.text[:200]}"
            )
            return False
        except requests.RequestException as e:
            logger.warning(f"status patch for {namespace}/{name} failed: {e}")
            return False
