# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Worker process entry point.

Wires the configured broker consumer and producer to a task engine and runs
until the consumer ends, fails fatally, or SIGINT/SIGTERM arrives.

Usage:
    MESSAGE_BROKER=rabbitmq taskrelay-worker --handler myapp.tasks:create_router
"""

import argparse
import asyncio
import importlib
import logging
import signal
from typing import Any

from prometheus_client import start_http_server

from taskrelay import __version__
from taskrelay.core.config.settings import Settings, get_settings
from taskrelay.core.exceptions import MessagingError
from taskrelay.core.tasks.handler import TaskHandler
from taskrelay.infrastructure.background.periodic import (
    PeriodicTaskPublisher,
    add_default_tasks,
)
from taskrelay.infrastructure.messaging.engine import TaskEngine
from taskrelay.infrastructure.messaging.factory import create_consumer, create_producer
from taskrelay.infrastructure.messaging.metrics import EngineMetrics
from taskrelay.utils.logging import bind_context, clear_context, setup_logging

logger = logging.getLogger(__name__)

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def load_handler(path: str) -> TaskHandler[Any]:
    """Resolve a "module:attribute" path to a task handler.

    The attribute may be a TaskHandler instance or a zero-argument callable
    returning one.

    Raises:
        ValueError: If the path is malformed or does not yield a handler.
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Handler path must look like 'module:attribute', got {path!r}")

    target = getattr(importlib.import_module(module_name), attribute)
    handler = target if isinstance(target, TaskHandler) else target()
    if not isinstance(handler, TaskHandler):
        raise ValueError(f"{path} did not produce a TaskHandler")
    return handler


def _install_signal_handlers(stop: asyncio.Event) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed = []
    for sig in STOP_SIGNALS:
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            logger.debug("Signal handlers are not supported on this platform")
            break
        installed.append(sig)
    return installed


async def run_worker(
    settings: Settings,
    handler: TaskHandler[Any],
    stop: asyncio.Event | None = None,
) -> None:
    """Run a worker until its consumer ends or a stop is requested.

    Args:
        settings: Application settings.
        handler: Handler executing tasks.
        stop: Event requesting shutdown (default: set by SIGINT/SIGTERM).

    Raises:
        ValueError: If no supported broker is configured.
        TransportError: On a fatal consumer error.
        PublishError: If the producer cannot connect.
    """
    if settings.message_broker is None:
        raise ValueError("MESSAGE_BROKER must be one of: kafka, redis, rabbitmq")

    bind_context(broker=settings.message_broker)
    logger.info(
        "Starting taskrelay worker %s (broker: %s, pool size: %d)",
        __version__,
        settings.message_broker,
        settings.worker.pool_size,
    )

    metrics = EngineMetrics(namespace=settings.metrics.namespace)
    if settings.metrics.enabled:
        start_http_server(settings.metrics.port, registry=metrics.registry)
        logger.info("Metrics endpoint listening on port %d", settings.metrics.port)

    producer = await create_producer(settings)
    engine = TaskEngine(handler, producer, pool_size=settings.worker.pool_size, metrics=metrics)
    consumer = create_consumer(settings, engine)
    periodic: PeriodicTaskPublisher | None = None

    if stop is None:
        stop = asyncio.Event()
        installed = _install_signal_handlers(stop)
    else:
        installed = []

    try:
        await consumer.connect()
        engine.start()

        if settings.scheduler.enabled:
            periodic = PeriodicTaskPublisher(producer, max_retries=settings.worker.max_retries)
            add_default_tasks(periodic, settings)
            await periodic.start()

        consuming = asyncio.create_task(consumer.run(), name="taskrelay-consumer")
        stopping = asyncio.create_task(stop.wait(), name="taskrelay-stop")
        done, _ = await asyncio.wait({consuming, stopping}, return_when=asyncio.FIRST_COMPLETED)

        if consuming in done:
            stopping.cancel()
            consuming.result()
            logger.info("Consumer finished, shutting down")
        else:
            logger.info("Shutdown requested, stopping consumer")
            consuming.cancel()
            await asyncio.gather(consuming, return_exceptions=True)
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

        await consumer.close()
        if periodic is not None:
            await periodic.stop()
        await engine.shutdown()
        await producer.close()
        logger.info("Worker shutdown complete")
        clear_context()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskrelay-worker",
        description="Consume task envelopes from a message broker and execute them.",
    )
    parser.add_argument(
        "--handler",
        required=True,
        help="Task handler as 'module:attribute' (instance or zero-argument factory)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Console entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)

    try:
        handler = load_handler(args.handler)
        asyncio.run(run_worker(settings, handler))
    except (ValueError, ImportError, AttributeError) as e:
        logger.error("Invalid worker configuration: %s", e)
        return 2
    except MessagingError as e:
        logger.error("Worker stopped: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
