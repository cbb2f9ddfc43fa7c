"""
Real-time task notifications.

Publishers address topics, never connections:
    user:<id>   - everything concerning tasks assigned to that user
    admins      - every task change
    task:<id>   - clients currently viewing that task

InMemoryBroker is enough for a single process. A multi-instance deployment
swaps in a Broker backed by a shared message bus without touching callers.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from fastapi import Depends
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

ADMIN_TOPIC = "admins"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


def task_topic(task_id: str) -> str:
    return f"task:{task_id}"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Broker(Protocol):
    def subscribe(self, topic: str, subscriber: Subscriber) -> None: ...

    def unsubscribe(self, topic: str, subscriber: Subscriber) -> None: ...

    def unsubscribe_all(self, subscriber: Subscriber) -> None: ...

    async def publish(self, topics: Iterable[str], message: Dict[str, Any]) -> int: ...


class InMemoryBroker:
    def __init__(self):
        # Starlette WebSockets are unhashable, so subscribers live in lists.
        self.topics: Dict[str, List[Subscriber]] = {}

    def subscribe(self, topic: str, subscriber: Subscriber) -> None:
        subs = self.topics.setdefault(topic, [])
        if not any(s is subscriber for s in subs):
            subs.append(subscriber)

    def unsubscribe(self, topic: str, subscriber: Subscriber) -> None:
        subs = self.topics.get(topic)
        if not subs:
            return
        subs[:] = [s for s in subs if s is not subscriber]
        if not subs:
            del self.topics[topic]

    def unsubscribe_all(self, subscriber: Subscriber) -> None:
        for topic in list(self.topics):
            self.unsubscribe(topic, subscriber)

    async def publish(self, topics: Iterable[str], message: Dict[str, Any]) -> int:
        """
        Deliver message once to every subscriber of any of the topics.

        Returns the number of successful deliveries. Subscribers that fail are
        dropped; delivery is best-effort and never raises.
        """
        targets: Dict[int, Subscriber] = {}
        for topic in topics:
            for sub in self.topics.get(topic, ()):
                targets.setdefault(id(sub), sub)

        delivered = 0
        for sub in targets.values():
            try:
                await sub.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping subscriber after failed send: %s", e)
                self.unsubscribe_all(sub)
        return delivered


class TaskNotifier:
    def __init__(self, broker: Broker):
        self.broker = broker

    async def task_changed(self, task: Dict[str, Any], action: str,
                           previous_assignee: Optional[str] = None) -> int:
        topics = [ADMIN_TOPIC, task_topic(task["id"])]
        assignee = task.get("assignedUser")
        if assignee:
            topics.append(user_topic(assignee["id"]))
        if previous_assignee:
            topics.append(user_topic(previous_assignee))

        message = {
            "event": "task_updated",
            "entity": "task",
            "action": action,
            "task": jsonable_encoder(task),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            return await self.broker.publish(topics, message)
        except Exception:
            logger.exception("Failed to publish %s notification for task %s", action, task.get("id"))
            return 0


broker = InMemoryBroker()


def get_broker() -> Broker:
    return broker


def get_notifier(active_broker: Broker = Depends(get_broker)) -> TaskNotifier:
    return TaskNotifier(active_broker)
