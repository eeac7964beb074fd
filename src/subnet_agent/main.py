"""Entry point for the standalone subnet agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event
from typing import Optional, Tuple

from oslo_config import cfg

from capa_subnet.config import AllocationSettings
from capa_subnet.exceptions import InvalidRequest
from capa_subnet.lock import LeaseLock
from capa_subnet.service import SubnetService
from subnet_operator import NodePoolReconciler, config_extensions
from subnet_operator.clients import (
    FileNetworkProvider,
    FileObjectStore,
    InMemoryNetworkProvider,
    InMemoryObjectStore,
    NetworkProvider,
    ObjectStore,
)

from .config import AgentConfig, load_config
from .watchers import NodePoolWatcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def build_backends(config: AgentConfig) -> Tuple[ObjectStore, NetworkProvider]:
    if config.store.type == "file":
        store: ObjectStore = FileObjectStore(config.store.path)
    else:
        store = InMemoryObjectStore()

    if config.provider.type == "file":
        provider: NetworkProvider = FileNetworkProvider(config.provider.path)
    else:
        provider = InMemoryNetworkProvider()
    return store, provider


def build_watcher(
    config: AgentConfig,
    stop_event: Event,
    conf: Optional[cfg.ConfigOpts] = None,
) -> NodePoolWatcher:
    """Wire backends, lock, service and reconciler into a watcher.

    With ``conf`` the allocation, lease and reconcile settings come from its
    ``subnet_allocation`` group rather than from the YAML file.
    """
    store, provider = build_backends(config)
    if conf is not None:
        reconciler = config_extensions.reconciler_from_conf(
            store, provider, config.lock.holder_identity, conf
        )
        interval = conf[config_extensions.GROUP].reconcile_interval
    else:
        reconciler = _reconciler_from_yaml(config, store, provider)
        interval = config.reconcile.interval

    return NodePoolWatcher(
        store=store,
        reconciler=reconciler,
        interval=interval,
        stop_event=stop_event,
        workers=config.reconcile.workers,
    )


def _reconciler_from_yaml(
    config: AgentConfig, store: ObjectStore, provider: NetworkProvider
) -> NodePoolReconciler:
    lock = LeaseLock(
        store,
        config.lock.holder_identity,
        lease_duration=config.lock.lease_duration,
        retry_period=config.lock.retry_period,
        acquire_timeout=config.lock.acquire_timeout,
    )
    service = SubnetService(store, provider, lock, config.allocation)
    return NodePoolReconciler(
        store,
        service,
        requeue_after=config.reconcile.interval,
        watch_filter=config.reconcile.watch_filter,
    )


def _load_oslo_conf(path: Path) -> Tuple[cfg.ConfigOpts, AllocationSettings]:
    conf = cfg.ConfigOpts()
    config_extensions.register_subnet_opts(conf)
    conf(args=[], default_config_files=[str(path)])
    # Values are converted on first access; touch each so bad input fails here.
    group = conf[config_extensions.GROUP]
    for opt in config_extensions.subnet_opts:
        getattr(group, opt.dest)
    return conf, config_extensions.settings_from_conf(conf)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the node pool subnet agent")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/subnet-operator/agent.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--oslo-config-file",
        type=Path,
        default=None,
        help="oslo.config file whose [subnet_allocation] group overrides the "
        "allocation, lease duration and reconcile settings of --config",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Reconcile every node pool once and exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        LOG.error("failed to load configuration %s: %s", args.config, exc)
        return 2

    conf = None
    settings = config.allocation
    if args.oslo_config_file is not None:
        try:
            conf, settings = _load_oslo_conf(args.oslo_config_file)
        except (cfg.Error, InvalidRequest) as exc:
            LOG.error("failed to load %s: %s", args.oslo_config_file, exc)
            return 2

    if config.store.type == "memory":
        LOG.warning("using in-memory store; node pools must be seeded programmatically")

    LOG.info(
        "allocating /%d blocks from %s",
        settings.subnet_prefix_length,
        settings.parent_cidr,
    )

    stop_event = Event()
    watcher = build_watcher(config, stop_event, conf)

    if args.once:
        results = watcher.poll()
        failed = [name for name, result in results.items() if isinstance(result, Exception)]
        return 1 if failed else 0

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.start()
    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    watcher.join()
    LOG.info("subnet agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
