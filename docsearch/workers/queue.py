"""
Work Queue — topology and producer

Topology (declared by both producer and consumer, idempotent):

  pdf.exchange (direct, durable) ──pdf.parsed──► pdf.parsed (quorum queue)
                                                   │ x-delivery-limit
                                                   │ rejected without requeue
                                                   ▼
  pdf.dlx (direct, durable) ──pdf.parsed──► pdf.parsed.dead

The quorum queue counts redeliveries in the x-delivery-count header; the
consumer uses it to stop requeueing a failing message, and the broker's
x-delivery-limit is the backstop if a consumer dies mid-retry.

Messages are persistent JSON envelopes {type, timestamp, data}.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from kombu import Connection, Exchange, Queue
from kombu.exceptions import KombuError

from docsearch.core.config import Settings, settings as default_settings
from docsearch.core.errors import QueueError
from docsearch.schemas.documents import WorkEnvelope, WorkMessage

logger = logging.getLogger(__name__)

PERSISTENT = 2

_PUBLISH_RETRY_POLICY = {
    "max_retries":    3,
    "interval_start": 0.5,
    "interval_step":  1.0,
    "interval_max":   3.0,
}


@dataclass(frozen=True)
class QueueTopology:
    exchange:      Exchange
    queue:         Queue
    dead_exchange: Exchange
    dead_queue:    Queue
    routing_key:   str


def build_topology(cfg: Settings | None = None) -> QueueTopology:
    cfg = cfg or default_settings
    exchange = Exchange(cfg.work_exchange, type="direct", durable=True)
    dead_exchange = Exchange(cfg.dead_letter_exchange, type="direct", durable=True)

    queue = Queue(
        cfg.work_queue,
        exchange=exchange,
        routing_key=cfg.work_routing_key,
        durable=True,
        queue_arguments={
            "x-queue-type":              "quorum",
            "x-delivery-limit":          cfg.max_delivery_attempts,
            "x-dead-letter-exchange":    cfg.dead_letter_exchange,
            "x-dead-letter-routing-key": cfg.work_routing_key,
        },
    )
    dead_queue = Queue(
        cfg.dead_letter_queue,
        exchange=dead_exchange,
        routing_key=cfg.work_routing_key,
        durable=True,
    )
    return QueueTopology(
        exchange=exchange,
        queue=queue,
        dead_exchange=dead_exchange,
        dead_queue=dead_queue,
        routing_key=cfg.work_routing_key,
    )


class WorkQueueProducer:
    """
    Publishes one work message per completed extraction.

    kombu is synchronous; publish() runs it in a thread executor so the
    caller's event loop is never blocked on the broker.
    """

    def __init__(
        self,
        broker_url: str,
        topology:   QueueTopology | None = None,
        connect_timeout: float = 5.0,
    ) -> None:
        self._broker_url = broker_url
        self._topology   = topology or build_topology()
        self._connect_timeout = connect_timeout

    async def publish(self, message: WorkMessage) -> dict:
        envelope = WorkEnvelope(data=message)
        body = envelope.to_wire()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._publish_sync, body)
        except (KombuError, OSError) as exc:
            logger.error(
                "Publish failed | doc=%s exchange=%s error=%s",
                message.doc_id, self._topology.exchange.name, exc,
            )
            raise QueueError(f"Could not publish work message for {message.doc_id}: {exc}") from exc

        logger.info(
            "Published | doc=%s routing_key=%s pages=%d tables=%d",
            message.doc_id, self._topology.routing_key,
            message.page_count, message.table_count,
        )
        return body

    def _publish_sync(self, body: dict) -> None:
        topology = self._topology
        with Connection(self._broker_url, connect_timeout=self._connect_timeout) as conn:
            producer = conn.Producer(serializer="json")
            producer.publish(
                body,
                exchange=topology.exchange,
                routing_key=topology.routing_key,
                delivery_mode=PERSISTENT,
                declare=[topology.dead_exchange, topology.dead_queue, topology.queue],
                retry=True,
                retry_policy=_PUBLISH_RETRY_POLICY,
            )
