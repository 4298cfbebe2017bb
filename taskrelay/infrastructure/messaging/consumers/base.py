# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Broker-agnostic consumer loop.

Every broker adapter reduces to the same loop: open one or more delivery
streams, hand each payload to the engine, then acknowledge accepted payloads
and reject malformed ones. The loop lives here once; adapters only supply
connection glue.

Status transitions::

    DISCONNECTED -> CONNECTED -> RUNNING -> STOPPED
                                        -> FATAL_ERROR
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Generic, TypeVar, Union

from taskrelay.core.exceptions import DecodeError, TransportError

if TYPE_CHECKING:
    from taskrelay.infrastructure.messaging.engine import TaskEngine

logger = logging.getLogger(__name__)

HandleT = TypeVar("HandleT")


class ConsumerStatus(str, Enum):
    """Lifecycle status of a consumer."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RUNNING = "running"
    STOPPED = "stopped"
    FATAL_ERROR = "fatal_error"


@dataclass(frozen=True)
class Disconnected:
    """No broker connection is held."""


@dataclass(frozen=True)
class Connected(Generic[HandleT]):
    """A live broker connection.

    Attributes:
        handle: Broker-specific connection objects.
    """

    handle: HandleT


ConnectionState = Union[Disconnected, Connected[Any]]


@dataclass(frozen=True)
class Delivery:
    """A raw payload received from a broker.

    Attributes:
        payload: Serialized task envelope.
        source: Topic, queue or channel the payload came from.
        message: Broker-native message, needed to acknowledge it.
    """

    payload: bytes | str
    source: str
    message: Any = None


class MessageConsumer(ABC, Generic[HandleT]):
    """Base class for broker consumers feeding a task engine."""

    def __init__(self, engine: "TaskEngine[Any]") -> None:
        self._engine = engine
        self._state: ConnectionState = Disconnected()
        self._status = ConsumerStatus.DISCONNECTED

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def status(self) -> ConsumerStatus:
        """Current lifecycle status."""
        return self._status

    @property
    def is_connected(self) -> bool:
        return isinstance(self._state, Connected)

    @abstractmethod
    def broker_kind(self) -> str:
        """Human-readable broker name, e.g. "Kafka"."""

    @abstractmethod
    async def _open(self) -> HandleT:
        """Establish the broker connection.

        Raises:
            TransportError: If the broker cannot be reached.
        """

    @abstractmethod
    async def _streams(self, handle: HandleT) -> list[AsyncIterator[Delivery]]:
        """Subscribe and return the delivery streams to drain.

        Raises:
            TransportError: If subscribing fails.
        """

    @abstractmethod
    async def _disconnect(self, handle: HandleT) -> None:
        """Release the broker connection."""

    async def ack(self, delivery: Delivery) -> None:
        """Acknowledge an accepted delivery. No-op unless the broker needs it."""

    async def reject(self, delivery: Delivery) -> None:
        """Reject a malformed delivery. No-op unless the broker needs it."""

    async def connect(self) -> None:
        """Connect to the broker. Calling it while connected is a no-op.

        Raises:
            TransportError: If the connection cannot be established.
        """
        if isinstance(self._state, Connected):
            return

        handle = await self._open()
        self._state = Connected(handle)
        self._status = ConsumerStatus.CONNECTED
        logger.info("%s consumer connected", self.broker_kind())

    async def run(self) -> None:
        """Consume until every stream ends or a fatal error occurs.

        Raises:
            TransportError: If called before connect() or on a fatal broker
                error. Any remaining streams are stopped first.
        """
        if not isinstance(self._state, Connected):
            raise TransportError(
                f"{self.broker_kind()} consumer not connected. Call connect() first."
            )

        try:
            streams = await self._streams(self._state.handle)
        except TransportError:
            self._status = ConsumerStatus.FATAL_ERROR
            raise

        self._status = ConsumerStatus.RUNNING
        logger.info("%s consumer is now listening for messages...", self.broker_kind())

        drains = [asyncio.create_task(self._drain(stream)) for stream in streams]
        try:
            await asyncio.gather(*drains)
        except TransportError as e:
            self._status = ConsumerStatus.FATAL_ERROR
            logger.error("%s consumer stopped on fatal error: %s", self.broker_kind(), e)
            raise
        finally:
            for drain in drains:
                if not drain.done():
                    drain.cancel()
            await asyncio.gather(*drains, return_exceptions=True)

        self._status = ConsumerStatus.STOPPED
        logger.info("%s consumer stream ended", self.broker_kind())

    async def close(self) -> None:
        """Release the broker connection. Errors are logged, not raised."""
        if not isinstance(self._state, Connected):
            return

        handle = self._state.handle
        self._state = Disconnected()
        if self._status != ConsumerStatus.FATAL_ERROR:
            self._status = ConsumerStatus.STOPPED

        try:
            await self._disconnect(handle)
        except Exception as e:
            logger.warning("Error closing %s consumer: %s", self.broker_kind(), e)
            return
        logger.info("%s consumer closed", self.broker_kind())

    async def _drain(self, stream: AsyncIterator[Delivery]) -> None:
        async for delivery in stream:
            await self._ingest(delivery)

    async def _ingest(self, delivery: Delivery) -> None:
        """Submit one delivery to the engine, then settle it with the broker."""
        try:
            envelope = await self._engine.submit(delivery.payload)
        except DecodeError as e:
            logger.error(
                "Failed to parse task event from %s '%s': %s",
                self.broker_kind(),
                delivery.source,
                e,
            )
            await self._settle(self.reject, delivery)
            return

        logger.info(
            "Received task event %s with priority %s from '%s'",
            envelope.id,
            envelope.priority.value,
            delivery.source,
        )
        await self._settle(self.ack, delivery)

    async def _settle(self, action: Any, delivery: Delivery) -> None:
        try:
            await action(delivery)
        except Exception as e:
            logger.error(
                "Failed to %s message from '%s': %s",
                action.__name__,
                delivery.source,
                e,
            )
