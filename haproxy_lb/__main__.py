"""
Entry point for the haproxy_lb package.

Usage: python -m haproxy_lb   (or the `haproxy-k8s-lb` console script)
"""

from .config import Config, setup_logging
from .haproxy import ProcessController
from .kube_client import KubeClient
from .reconciler import Reconciler
from .renderer import HAProxyRenderer, RenderError


def main() -> None:
    config = Config.from_env()
    logger = setup_logging(config.log_level)
    logger.debug("main: application starting")

    logger.info("=" * 60)
    logger.info("haproxy-k8s-lb")
    logger.info(f"  kube_server:     {config.kube_server}")
    logger.info(f"  namespace:       {config.namespace}")
    logger.info(f"  haproxy_config:  {config.haproxy_config}")
    logger.info(f"  haproxy_bin:     {config.haproxy_bin}")
    logger.info(f"  config_template: {config.config_template or '(built-in)'}")
    logger.info(f"  update_interval: {config.update_interval}s")
    logger.info("=" * 60)

    try:
        renderer = HAProxyRenderer(config.tunables, config.config_template or None)
    except RenderError as e:
        raise SystemExit(str(e)) from e

    reconciler = Reconciler(
        client=KubeClient(config),
        renderer=renderer,
        controller=ProcessController(config.haproxy_bin, config.reload_grace),
        config_path=config.haproxy_config,
        interval=config.update_interval,
    )
    reconciler.start()
    try:
        reconciler.wait()
    except KeyboardInterrupt:
        logger.info("interrupted, stopping")
        reconciler.stop()


if __name__ == "__main__":
    main()
