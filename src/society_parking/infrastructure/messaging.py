# File: src/society_parking/infrastructure/messaging.py
"""
Messaging Infrastructure for Society Parking

1. Event Bus - intra-process publishing of committed domain events
2. Message Queue - relay of notifications to other processes
3. Notification handler - turns parking events into notifications

Supported Brokers:
- Redis Pub/Sub
- In-memory (for testing)
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime
from dataclasses import dataclass, asdict, field
from uuid import uuid4
import json
import logging
import threading
import time

import redis

from ..domain.models import (
    DomainEvent, SlotReservedEvent, SlotAssignedEvent, SlotReleasedEvent,
    BookingCreatedEvent, BookingCancelledEvent, BookingCompletedEvent
)


PARKING_EVENT_TYPES = [
    SlotReservedEvent.event_type,
    SlotAssignedEvent.event_type,
    SlotReleasedEvent.event_type,
    BookingCreatedEvent.event_type,
    BookingCancelledEvent.event_type,
    BookingCompletedEvent.event_type,
]


# ============================================================================
# MESSAGE BASE CLASSES
# ============================================================================

@dataclass
class Message:
    """Base message class"""
    message_id: str = field(default_factory=lambda: str(uuid4()))
    message_type: str = "notification"
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = "society_parking"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        data = dict(data)
        data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'Message':
        return cls.from_dict(json.loads(json_str))


@dataclass
class Notification(Message):
    """Notification about a parking state change"""
    event_type: str = ""
    recipient: Optional[str] = None
    title: str = ""
    body: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Reacts to committed parking events"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    Dispatches committed domain events to in-process handlers

    Handlers run synchronously in the publishing thread. A failing handler
    is logged and does not stop the others.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to every parking event type"""
        for event_type in PARKING_EVENT_TYPES:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type}")

    def publish(self, event: DomainEvent) -> None:
        """Hand a committed event to every handler registered for its type"""
        self._logger.info(f"Publishing event: {event.event_type} (ID: {event.event_id})")

        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, []))

        for handler in handlers:
            if handler.can_handle(event):
                try:
                    handler.handle(event)
                    self._logger.debug(f"{handler.__class__.__name__} handled {event.event_type}")
                except Exception as e:
                    self._logger.error(
                        f"Error handling event {event.event_type} with {handler.__class__.__name__}: {e}"
                    )


# ============================================================================
# NOTIFICATION QUEUES
# ============================================================================

class MessageQueue(ABC):
    """Abstract message queue interface"""

    @abstractmethod
    def publish(self, topic: str, message: Message) -> bool:
        pass

    @abstractmethod
    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        pass

    def close(self) -> None:
        pass


# ============================================================================
# REDIS MESSAGE QUEUE
# ============================================================================

class RedisMessageQueue(MessageQueue):
    """Relays parking notifications over Redis pub/sub channels"""

    def __init__(self, redis_url: str = "redis://localhost:6379", **kwargs):
        self.redis_url = redis_url
        self._logger = logging.getLogger(self.__class__.__name__)

        self.redis_client = redis.Redis.from_url(redis_url, **kwargs)
        self.pubsub = self.redis_client.pubsub()

        self._subscriptions: Dict[str, str] = {}  # subscription_id -> topic
        self._callbacks: Dict[str, Callable[[Message], None]] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def publish(self, topic: str, message: Message) -> bool:
        """Publish a message to a Redis channel, False when it could not be sent"""
        try:
            receivers = self.redis_client.publish(topic, message.to_json())
        except redis.RedisError as e:
            self._logger.error(f"Could not relay {message.message_id} to {topic}: {e}")
            return False
        self._logger.debug(f"Published message to {topic}: {message.message_id} ({receivers} receivers)")
        return True

    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        subscription_id = str(uuid4())
        self._subscriptions[subscription_id] = topic
        self._callbacks[subscription_id] = callback
        self.pubsub.subscribe(topic)

        if not self._running:
            self._start_listener()

        self._logger.debug(f"Subscription {subscription_id} joined channel {topic}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id not in self._subscriptions:
            return False

        topic = self._subscriptions.pop(subscription_id)
        self._callbacks.pop(subscription_id, None)

        # last local subscriber for the channel
        if topic not in self._subscriptions.values():
            self.pubsub.unsubscribe(topic)
            self._logger.debug(f"Left channel {topic}")
        return True

    def _start_listener(self):
        self._running = True
        self._thread = threading.Thread(target=self._listen, name="redis-listener", daemon=True)
        self._thread.start()
        self._logger.info(f"Listening for notifications on {self.redis_url}")

    def _listen(self):
        while self._running:
            try:
                message = self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message['type'] == 'message':
                    self._handle_message(message)
            except redis.RedisError as e:
                self._logger.error(f"Redis listener failed, retrying: {e}")
                time.sleep(1)

    def _handle_message(self, redis_message: Dict[str, Any]):
        channel = redis_message['channel']
        topic = channel.decode('utf-8') if isinstance(channel, bytes) else channel
        raw = redis_message['data']
        data = raw.decode('utf-8') if isinstance(raw, bytes) else raw

        try:
            payload = json.loads(data)
            message = Notification.from_dict(payload) if 'event_type' in payload else Message.from_dict(payload)
        except (ValueError, TypeError, KeyError) as e:
            self._logger.error(f"Discarding malformed message on {topic}: {e}")
            return

        for subscription_id, callback_topic in list(self._subscriptions.items()):
            if callback_topic == topic:
                callback = self._callbacks[subscription_id]
                try:
                    callback(message)
                except Exception as e:
                    self._logger.error(f"Subscriber {subscription_id} on {topic} failed: {e}")

    def close(self):
        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)

        self.pubsub.close()
        self.redis_client.close()
        self._logger.info(f"Closed notification relay to {self.redis_url}")


# ============================================================================
# IN-MEMORY MESSAGE QUEUE
# ============================================================================

class InMemoryMessageQueue(MessageQueue):
    """Process-local queue that also records what it relays"""

    def __init__(self):
        self._callbacks: Dict[str, Dict[str, Callable[[Message], None]]] = {}
        self._messages: Dict[str, List[Message]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: Message) -> bool:
        with self._lock:
            self._messages.setdefault(topic, []).append(message)
            callbacks = list(self._callbacks.get(topic, {}).items())

        for subscription_id, callback in callbacks:
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Error in callback {subscription_id} for topic {topic}: {e}")

        self._logger.debug(f"Published to {topic}: {message.message_id}")
        return True

    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        subscription_id = str(uuid4())
        with self._lock:
            self._callbacks.setdefault(topic, {})[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            for callbacks in self._callbacks.values():
                if callbacks.pop(subscription_id, None) is not None:
                    return True
        return False

    def get_messages(self, topic: str) -> List[Message]:
        """Messages published to a topic so far"""
        with self._lock:
            return list(self._messages.get(topic, []))


# ============================================================================
# NOTIFICATION RELAY
# ============================================================================

class NotificationEventHandler(EventHandler):
    """Relays committed parking events to a message queue as notifications"""

    TITLES = {
        SlotReservedEvent.event_type: "Visitor slot reserved",
        SlotAssignedEvent.event_type: "Resident slot assigned",
        SlotReleasedEvent.event_type: "Slot released",
        BookingCreatedEvent.event_type: "Visitor parking booked",
        BookingCancelledEvent.event_type: "Visitor booking cancelled",
        BookingCompletedEvent.event_type: "Visitor booking completed",
    }

    def __init__(self, queue: MessageQueue, channel: str = "parking.events"):
        self.queue = queue
        self.channel = channel
        self._logger = logging.getLogger(self.__class__.__name__)

    def handle(self, event: DomainEvent) -> None:
        notification = self.build_notification(event)
        if not self.queue.publish(self.channel, notification):
            self._logger.warning(f"Notification for {event.event_type} was not relayed")

    def build_notification(self, event: DomainEvent) -> Notification:
        data = event.payload()
        slot_number = data.get("slot_number", "")
        return Notification(
            timestamp=event.timestamp,
            event_type=event.event_type,
            recipient=data.get("requester") or data.get("holder") or data.get("resident_id"),
            title=self.TITLES.get(event.event_type, event.event_type),
            body=f"{self.TITLES.get(event.event_type, event.event_type)}: {slot_number}",
            data=data,
            metadata={"event_id": event.event_id},
        )
