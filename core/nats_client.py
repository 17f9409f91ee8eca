"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between services

This module wraps nats-py (JetStream) behind a small event bus interface:
publish_event / subscribe_to_events / close.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import nats
from nats.aio.client import Client as NATS
from nats.aio.msg import Msg
from nats.errors import Error as NATSError
from nats.js import JetStreamContext
from nats.js.errors import BadRequestError

from core.config.infra_config import InfraConfig

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class EventType(Enum):
    """Event types used by the inventory ledger"""

    # Inventory Events (published)
    STOCK_RESERVED = "inventory.reserved"
    STOCK_COMMITTED = "inventory.committed"
    STOCK_RELEASED = "inventory.released"
    STOCK_EXPIRED = "inventory.expired"
    STOCK_ADJUSTED = "inventory.adjusted"
    STOCK_FAILED = "inventory.failed"
    ALERT_TRIGGERED = "inventory.alert.triggered"
    ALERT_REOPENED = "inventory.alert.reopened"
    ALERT_ACKNOWLEDGED = "inventory.alert.acknowledged"
    ALERT_SNOOZED = "inventory.alert.snoozed"
    ALERT_RESOLVED = "inventory.alert.resolved"
    ALERT_CANCELLED = "inventory.alert.cancelled"

    # Payment / Order Events (subscribed)
    PAYMENT_COMPLETED = "payment.completed"
    PAYMENT_FAILED = "payment.failed"
    ORDER_CANCELED = "order.canceled"


class ServiceSource(Enum):
    """Service sources"""

    INVENTORY_SERVICE = "inventory_service"
    ORDER_SERVICE = "order_service"
    PAYMENT_SERVICE = "payment_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: Union[EventType, str],
        source: Union[ServiceSource, str],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, EventType) else event_type
        self.source = source.value if isinstance(source, ServiceSource) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id") or str(uuid.uuid4())
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


EventHandler = Callable[[Event], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus on nats-py.

    Streams are derived from the first token of the event type
    (inventory.reserved -> inventory-stream).
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used for consumer names)
            config: Optional infrastructure configuration
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self.servers = self.config.nats_servers

        self._nc: Optional[NATS] = None
        self._js: Optional[JetStreamContext] = None
        self._subscriptions: Dict[str, Any] = {}
        self._known_streams: set = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except (NATSError, OSError) as e:
            logger.error(f"Failed to connect to NATS at {self.servers}: {e}")
            raise

    async def _ensure_stream(self, prefix: str) -> str:
        stream_name = f"{prefix}-stream"
        if stream_name in self._known_streams:
            return stream_name
        try:
            await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
        except BadRequestError as e:
            # Stream already exists with a different configuration
            logger.debug(f"Stream creation note for {stream_name}: {e}")
        self._known_streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The subject is the event type, e.g. "inventory.alert.triggered".
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type.split('.')[0])
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except NATSError as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: EventHandler, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable JetStream consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "payment_service.payment.completed")
            handler: Async callback function to handle events
            durable: Optional durable name for the consumer
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return None

        prefix = pattern.split('.')[0]
        consumer_name = durable or f"{self.service_name}-{pattern}".replace('.', '-').replace('*', 'all').replace('>', 'all')

        async def _on_message(msg: Msg):
            try:
                payload = json.loads(msg.data.decode())
                if 'type' in payload and 'data' in payload:
                    event = Event.from_dict(payload)
                else:
                    event = Event(event_type=msg.subject, source=prefix, data=payload, subject=msg.subject)
                await handler(event)
            except Exception as e:
                # A poisoned message must not stop the consumer
                logger.error(f"Error processing message on {msg.subject}: {e}")
            finally:
                await msg.ack()

        try:
            await self._ensure_stream(prefix)
            subscription = await self._js.subscribe(
                pattern, durable=consumer_name, cb=_on_message, manual_ack=True
            )
            self._subscriptions[pattern] = subscription
            logger.info(f"Subscribed to {pattern} (JetStream consumer {consumer_name})")
            return consumer_name

        except NATSError as e:
            logger.error(f"Error subscribing to {pattern}: {e}")
            return None

    @property
    def subscribed_patterns(self) -> List[str]:
        return list(self._subscriptions.keys())

    async def close(self):
        """Drain subscriptions and close the NATS connection"""
        self._subscriptions.clear()
        if self._nc is not None and not self._nc.is_closed:
            await self._nc.drain()
        self._nc = None
        self._js = None
        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional infrastructure configuration

    Returns:
        NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus


async def close_event_bus() -> None:
    """Close the singleton event bus if it was created"""
    global _event_bus

    if _event_bus is not None:
        await _event_bus.close()
        _event_bus = None
