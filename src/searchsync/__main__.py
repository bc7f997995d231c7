"""CLI entry point for the searchsync indexer.

Runs the indexer once (``--once``) or continuously with a Prometheus
metrics server.

Examples:
    ```bash
    python -m searchsync --once
    python -m searchsync --index tags --log-level DEBUG
    python -m searchsync --config config/services/indexer.yaml
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from searchsync.core import Store, start_metrics_server
from searchsync.core.exceptions import ConfigurationError, ConnectionPoolError
from searchsync.core.logger import Logger, StructuredFormatter
from searchsync.core.yaml import load_yaml
from searchsync.models.constants import ServiceName
from searchsync.services.indexer import Indexer
from searchsync.services.indices import PROCESSORS


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"
INDEXER_CONFIG = CONFIG_BASE / "services" / "indexer.yaml"

logger = Logger("cli")


async def run_indexer(indexer: Indexer, *, once: bool) -> int:
    """Run the indexer in one-shot or continuous mode.

    In one-shot mode a single cycle runs and the exit code reflects whether
    every index committed. In continuous mode a metrics server is started
    and the service runs until a shutdown signal is received.

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    if once:
        try:
            async with indexer:
                await indexer.run()
            logger.info(f"{ServiceName.INDEXER}_completed")
            return 0
        except Exception as e:  # Intentionally broad: CLI error boundary for one-shot mode
            logger.error(f"{ServiceName.INDEXER}_failed", error=str(e))
            return 1

    metrics_config = indexer.config.metrics
    metrics_server = await start_metrics_server(metrics_config)

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        indexer.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with indexer:
            await indexer.run_forever()
        return 0
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error(f"{ServiceName.INDEXER}_failed", error=str(e))
        return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="searchsync",
        description="Incremental search index synchronization",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=INDEXER_CONFIG,
        help=f"Indexer config path (default: {INDEXER_CONFIG})",
    )

    parser.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Store config path (default: {STORE_CONFIG})",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit (default: run continuously)",
    )

    parser.add_argument(
        "--index",
        action="append",
        choices=sorted(PROCESSORS),
        dest="indices",
        metavar="NAME",
        help="Index to sync; repeat for several (default: indices from config)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install a ``StructuredFormatter`` on the root handler.

    Output from ``Logger`` and from plain ``logging.getLogger()`` calls is
    unified as ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def _apply_pool_overrides(store_dict: dict[str, Any], pool_overrides: dict[str, Any] | None) -> None:
    """Merge the service's ``pool`` section into the shared store configuration.

    ``user`` and ``password_env`` go to ``pool.database``, ``min_size`` and
    ``max_size`` to ``pool.limits``. ``application_name`` defaults to the
    service name.
    """
    pool = store_dict.setdefault("pool", {})
    server_settings = pool.setdefault("server_settings", {})
    server_settings.setdefault("application_name", f"searchsync-{ServiceName.INDEXER}")

    if not pool_overrides:
        return

    if "application_name" in pool_overrides:
        server_settings["application_name"] = pool_overrides["application_name"]

    db_overrides = {k: pool_overrides[k] for k in ("user", "password_env") if k in pool_overrides}
    if db_overrides:
        pool.setdefault("database", {}).update(db_overrides)

    limits_keys = ("min_size", "max_size")
    limits_overrides = {k: pool_overrides[k] for k in limits_keys if k in pool_overrides}
    if limits_overrides:
        pool.setdefault("limits", {}).update(limits_overrides)


async def main(argv: list[str] | None = None) -> int:
    """Parse args, build the store and the indexer, and run."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        store_dict = _load_yaml_dict(args.store_config)
        service_dict = _load_yaml_dict(args.config)
        _apply_pool_overrides(store_dict, service_dict.pop("pool", None))
        if args.indices:
            service_dict["indices"] = args.indices

        store = Store.from_dict(store_dict)
        indexer = Indexer.from_dict(service_dict, store=store)
    except (ConfigurationError, ValidationError) as e:
        logger.error("config_invalid", error=str(e))
        return 1

    try:
        async with store:
            return await run_indexer(indexer, once=args.once)
    except ConnectionPoolError as e:
        logger.error("connection_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
