"""
Event Bus - Pub/sub notifications for runs, post actions and cascades.

The UI layer subscribes here instead of being called directly:
- Terminal run events (RUN_COMPLETED / RUN_FAILED / RUN_CANCELLED) are the
  user-facing notifications, exactly one per run
- Tree changes tell views to refresh
- Cascade events report progress and the final summary
"""

import asyncio
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"
    RUN_ALREADY_ACTIVE = "run_already_active"

    # Mid-run interaction
    QUESTION_ASKED = "question_asked"

    # Post actions
    NODES_MATERIALIZED = "nodes_materialized"
    VARIABLES_UPDATED = "variables_updated"
    TREE_CHANGED = "tree_changed"

    # Cascade lifecycle
    CASCADE_STARTED = "cascade_started"
    CASCADE_NODE_SKIPPED = "cascade_node_skipped"
    DEPTH_LIMIT_REACHED = "depth_limit_reached"
    CASCADE_COMPLETED = "cascade_completed"
    CASCADE_CANCELLED = "cascade_cancelled"


class NotificationLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class CascadeEvent:
    """An event published by the engine."""

    type: EventType
    node_id: str | None = None
    run_id: str | None = None
    cascade_id: str | None = None
    level: NotificationLevel = NotificationLevel.INFO
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["level"] = self.level.value
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


EventHandler = Callable[[CascadeEvent], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_node: str | None = None
    filter_cascade: str | None = None

    def accepts(self, event: CascadeEvent) -> bool:
        if event.type not in self.event_types:
            return False
        if self.filter_node and self.filter_node != event.node_id:
            return False
        return not (self.filter_cascade and self.filter_cascade != event.cascade_id)


class EventBus:
    """
    Pub/sub event bus.

    Handlers run concurrently, bounded by ``max_concurrent_handlers``.
    A failing handler is logged; the publisher never sees the error.

    Example:
        bus = EventBus()

        async def on_failed(event: CascadeEvent):
            print(f"{event.node_id} failed: {event.message}")

        bus.subscribe([EventType.RUN_FAILED], on_failed)
    """

    def __init__(self, max_history: int = 1000, max_concurrent_handlers: int = 10):
        self._subscriptions: dict[str, Subscription] = {}
        self._history: deque[CascadeEvent] = deque(maxlen=max_history)
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._next_id = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_node: str | None = None,
        filter_cascade: str | None = None,
    ) -> str:
        """Register a handler; returns the id to pass to unsubscribe()."""
        self._next_id += 1
        sub_id = f"sub_{self._next_id}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_node=filter_node,
            filter_cascade=filter_cascade,
        )
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    async def publish(self, event: CascadeEvent) -> None:
        self._history.append(event)
        handlers = [s.handler for s in self._subscriptions.values() if s.accepts(event)]
        if handlers:
            await asyncio.gather(*(self._call(handler, event) for handler in handlers))

    async def _call(self, handler: EventHandler, event: CascadeEvent) -> None:
        async with self._semaphore:
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Event handler for {event.type} raised: {e}")

    async def _emit(self, event_type: EventType, **fields: Any) -> None:
        await self.publish(CascadeEvent(type=event_type, **fields))

    # === RUN EVENTS ===

    async def emit_run_started(self, node_id: str, run_id: str, cascade_id: str | None = None):
        await self._emit(
            EventType.RUN_STARTED, node_id=node_id, run_id=run_id, cascade_id=cascade_id
        )

    async def emit_run_already_active(self, node_id: str) -> None:
        await self._emit(
            EventType.RUN_ALREADY_ACTIVE,
            node_id=node_id,
            message="This prompt is already running",
        )

    async def emit_run_completed(
        self,
        node_id: str,
        run_id: str,
        message: str,
        data: dict[str, Any] | None = None,
        cascade_id: str | None = None,
    ) -> None:
        await self._emit(
            EventType.RUN_COMPLETED,
            node_id=node_id,
            run_id=run_id,
            cascade_id=cascade_id,
            level=NotificationLevel.SUCCESS,
            message=message,
            data=data or {},
        )

    async def emit_run_failed(
        self,
        node_id: str,
        run_id: str,
        error: str,
        data: dict[str, Any] | None = None,
        cascade_id: str | None = None,
    ) -> None:
        await self._emit(
            EventType.RUN_FAILED,
            node_id=node_id,
            run_id=run_id,
            cascade_id=cascade_id,
            level=NotificationLevel.ERROR,
            message=error,
            data=data or {},
        )

    async def emit_run_cancelled(
        self, node_id: str, run_id: str, reason: str, cascade_id: str | None = None
    ) -> None:
        await self._emit(
            EventType.RUN_CANCELLED,
            node_id=node_id,
            run_id=run_id,
            cascade_id=cascade_id,
            level=NotificationLevel.WARNING,
            message=f"Run cancelled ({reason})",
            data={"reason": reason},
        )

    async def emit_question_asked(
        self, node_id: str, run_id: str, question: str, variable_name: str
    ) -> None:
        await self._emit(
            EventType.QUESTION_ASKED,
            node_id=node_id,
            run_id=run_id,
            data={"question": question, "variable_name": variable_name},
        )

    # === ACTION EVENTS ===

    async def emit_nodes_materialized(
        self,
        node_id: str,
        target_parent_id: str | None,
        created_node_ids: list[str],
        message: str = "",
    ) -> None:
        await self._emit(
            EventType.NODES_MATERIALIZED,
            node_id=node_id,
            message=message,
            data={
                "target_parent_id": target_parent_id,
                "created_node_ids": created_node_ids,
                "created_count": len(created_node_ids),
            },
        )

    async def emit_tree_changed(self, parent_id: str | None) -> None:
        await self._emit(EventType.TREE_CHANGED, node_id=parent_id, data={"parent_id": parent_id})

    async def emit_variables_updated(self, node_id: str, processed: int) -> None:
        await self._emit(
            EventType.VARIABLES_UPDATED, node_id=node_id, data={"processed": processed}
        )

    # === CASCADE EVENTS ===

    async def emit_cascade_started(self, cascade_id: str, node_ids: list[str]) -> None:
        await self._emit(
            EventType.CASCADE_STARTED, cascade_id=cascade_id, data={"node_ids": node_ids}
        )

    async def emit_cascade_node_skipped(self, cascade_id: str, node_id: str, reason: str):
        await self._emit(
            EventType.CASCADE_NODE_SKIPPED,
            cascade_id=cascade_id,
            node_id=node_id,
            data={"reason": reason},
        )

    async def emit_depth_limit_reached(self, cascade_id: str, node_id: str, max_depth: int):
        await self._emit(
            EventType.DEPTH_LIMIT_REACHED,
            cascade_id=cascade_id,
            node_id=node_id,
            level=NotificationLevel.WARNING,
            message=f"Maximum cascade depth ({max_depth}) reached",
            data={"max_depth": max_depth},
        )

    async def emit_cascade_completed(self, cascade_id: str, summary: dict[str, Any]) -> None:
        failed = summary.get("failed", 0)
        await self._emit(
            EventType.CASCADE_COMPLETED,
            cascade_id=cascade_id,
            level=NotificationLevel.WARNING if failed else NotificationLevel.SUCCESS,
            message=f"Cascade finished: {summary.get('succeeded', 0)} succeeded, {failed} failed",
            data=summary,
        )

    async def emit_cascade_cancelled(self, cascade_id: str, summary: dict[str, Any]) -> None:
        await self._emit(
            EventType.CASCADE_CANCELLED,
            cascade_id=cascade_id,
            level=NotificationLevel.WARNING,
            message="Cascade cancelled",
            data=summary,
        )

    # === HISTORY ===

    def get_history(
        self,
        event_type: EventType | None = None,
        node_id: str | None = None,
        cascade_id: str | None = None,
        limit: int = 100,
    ) -> list[CascadeEvent]:
        """Recent events, newest first, optionally filtered."""
        matching = [
            event
            for event in reversed(self._history)
            if (event_type is None or event.type == event_type)
            and (node_id is None or event.node_id == node_id)
            and (cascade_id is None or event.cascade_id == cascade_id)
        ]
        return matching[:limit]

    def get_stats(self) -> dict:
        return {
            "total_events": len(self._history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": dict(Counter(event.type.value for event in self._history)),
        }

    async def wait_for(
        self,
        event_type: EventType,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> CascadeEvent | None:
        """Wait for the next matching event; None on timeout."""
        received: asyncio.Future[CascadeEvent] = asyncio.get_running_loop().create_future()

        async def handler(event: CascadeEvent) -> None:
            if not received.done():
                received.set_result(event)

        sub_id = self.subscribe([event_type], handler, filter_node=node_id)
        try:
            return await asyncio.wait_for(received, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(sub_id)
