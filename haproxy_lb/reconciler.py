"""
Reconcile engine.

One cycle:
  fetch nodes + services → build model → render → diff against last applied
  → (skip | write candidate → validate → install → reload) → publish status

State kept across cycles is only the last applied config text and the
HAProxy process handle; both change only at the end of a successful apply.
A failed cycle leaves them as they were and the next tick retries.
"""

import enum
import logging
import os
import threading
from typing import List, Optional

from .haproxy import NO_PROCESS, ProcessController, ProcessHandle, ProcessSpawnError, write_config
from .kube_client import KubeClient, RegistryError
from .model import MalformedRegistryData, RenderedConfig, ServiceExposure
from .model_builder import build, summarize
from .renderer import HAProxyRenderer, RenderError

logger = logging.getLogger("haproxy_lb")


class CycleOutcome(enum.Enum):
    BUSY = "busy"
    FAILED = "failed"
    UNCHANGED = "unchanged"
    APPLIED = "applied"


class Reconciler:
    """Keeps HAProxy in sync with Kubernetes services and nodes."""

    def __init__(
        self,
        client: KubeClient,
        renderer: HAProxyRenderer,
        controller: ProcessController,
        config_path: str,
        interval: float = 60,
    ) -> None:
        self._client = client
        self._renderer = renderer
        self._controller = controller
        self._config_path = config_path
        self._candidate_path = f"{config_path}.candidate"
        self._interval = interval

        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._last_applied: Optional[RenderedConfig] = None
        self._handle: ProcessHandle = NO_PROCESS

    # ── Introspection ─────────────────────────────────────────

    @property
    def handle(self) -> ProcessHandle:
        return self._handle

    @property
    def last_applied(self) -> Optional[RenderedConfig]:
        return self._last_applied

    # ── Cycle ─────────────────────────────────────────────────

    def run_once(self) -> CycleOutcome:
        """Run one cycle unless one is already running (then drop this call)."""
        if not self._in_flight.acquire(blocking=False):
            logger.debug("run_once: still updating, trigger dropped")
            return CycleOutcome.BUSY
        try:
            return self._cycle()
        finally:
            self._in_flight.release()

    def _cycle(self) -> CycleOutcome:
        try:
            logger.debug("Fetching Kubernetes nodes...")
            nodes = self._client.list_nodes()
            logger.debug("Fetching Kubernetes services...")
            services = self._client.list_services()

            exposures, backends = build(services, nodes)
            logger.info(f"model: {summarize(exposures)}, backends={len(backends)}")

            rendered = self._renderer.render(exposures, backends)
        except (RegistryError, MalformedRegistryData, RenderError) as e:
            logger.error(f"Failed to update configuration: {e}")
            return CycleOutcome.FAILED
        except (TypeError, AttributeError, ValueError) as e:
            logger.error(f"Failed to update configuration: malformed registry data: {e!r}")
            return CycleOutcome.FAILED

        if self._last_applied is not None and self._last_applied.text == rendered.text:
            logger.debug("Config did not change.")
            self._publish_status(exposures)
            return CycleOutcome.UNCHANGED

        if not self._apply(rendered):
            return CycleOutcome.FAILED

        self._publish_status(exposures)
        return CycleOutcome.APPLIED

    def _apply(self, rendered: RenderedConfig) -> bool:
        """Validate the candidate, install it and reload. True on success."""
        installed = False
        try:
            logger.debug(f"Writing candidate configuration to {self._candidate_path}")
            write_config(self._candidate_path, rendered.text)

            if not self._controller.validate(self._candidate_path):
                logger.error(f"HAProxy configuration {rendered.digest[:12]} is not valid")
                return False

            os.replace(self._candidate_path, self._config_path)
            installed = True
            result = self._controller.reload(self._config_path, self._handle)
        except (OSError, ProcessSpawnError) as e:
            logger.error(f"Failed to update configuration: {e}")
            if installed:
                self._restore_live_config()
            return False

        if not result.ok:
            logger.error(
                f"HAProxy did not stay up (exit {result.returncode}); "
                f"keeping pid {self._handle.pid}"
            )
            self._restore_live_config()
            return False

        self._handle = result.handle
        self._last_applied = rendered
        logger.info(
            f"✅ HAProxy reloaded: pid={self._handle.pid}, config={rendered.digest[:12]}"
        )
        return True

    def _restore_live_config(self) -> None:
        """Put the running process's config back on the live path."""
        if self._last_applied is None:
            return
        try:
            write_config(self._config_path, self._last_applied.text)
        except OSError as e:
            logger.warning(f"could not restore {self._config_path}: {e}")

    # ── Status publication ────────────────────────────────────

    @staticmethod
    def pending_status(exposures: List[ServiceExposure]) -> List[ServiceExposure]:
        """Routable LoadBalancer exposures whose bind address is not yet in status.ingress."""
        return [
            e
            for e in exposures
            if e.service_type == "LoadBalancer"
            and e.bind_address
            and e.valid_ports
            and not e.has_ingress
        ]

    def _publish_status(self, exposures: List[ServiceExposure]) -> None:
        for exposure in self.pending_status(exposures):
            status = dict(exposure.raw.get("status") or {})
            status["loadBalancer"] = {"ingress": [{"ip": exposure.bind_address}]}
            service = dict(exposure.raw)
            service["status"] = status

            logger.debug(f"Updating LB status of {exposure.key}: {status}")
            if self._client.update_service_status(service):
                logger.info(f"📣 {exposure.key} ingress set to {exposure.bind_address}")
            else:
                logger.warning(f"⚠️ status update failed for {exposure.key} (retry next cycle)")

    # ── Timer ─────────────────────────────────────────────────

    def _safe_run(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            logger.exception(f"reconcile cycle crashed: {e}")

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self._safe_run()

    def trigger(self) -> threading.Thread:
        """Request an immediate cycle on a worker thread."""
        t = threading.Thread(target=self._safe_run, daemon=True)
        t.start()
        return t

    def start(self) -> None:
        """Run one cycle now, then every `interval` seconds on a daemon thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        logger.info(f"Starting watch process, update interval: {self._interval}s")
        self._safe_run()
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def wait(self) -> None:
        """Block until stop() is called."""
        while not self._stop.wait(3600):
            pass
