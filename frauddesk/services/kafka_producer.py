"""
FraudDesk — Kafka Producer & Consumer

Producer  → publishes scored-transaction events and alert notifications.
Consumer  → background worker that pulls raw transactions from the ingest
            topic and runs them through the same scoring pipeline as
            POST /api/v1/transactions.
"""

import json
import logging
from typing import Any, Dict

from aiokafka import AIOKafkaProducer, AIOKafkaConsumer

from frauddesk.config import settings

logger = logging.getLogger("frauddesk.kafka")


# ===========================================================================
# Producer (singleton, lifecycle managed by FastAPI app.state)
# ===========================================================================
class KafkaProducer:
    def __init__(self):
        self._producer: AIOKafkaProducer | None = None

    @property
    def is_running(self) -> bool:
        return self._producer is not None

    async def start(self):
        self._producer = AIOKafkaProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",
            compression_type="gzip",
        )
        await self._producer.start()
        logger.info("Kafka producer started — brokers=%s", settings.KAFKA_BOOTSTRAP_SERVERS)

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped.")

    async def send(self, topic: str, value: Dict[str, Any], key: str | None = None):
        if self._producer is None:
            raise RuntimeError("KafkaProducer has not been started.")
        await self._producer.send_and_wait(
            topic=topic,
            value=value,
            key=key,
        )
        logger.debug("Kafka send → topic=%s key=%s", topic, key)


# ===========================================================================
# Consumer  (run as a background asyncio task)
# ===========================================================================
class KafkaConsumer:
    """
    Subscribes to the raw-transactions topic, scores each message, and
    publishes the scored event downstream.

    Run with:  python -m frauddesk.services.kafka_producer
    """

    def __init__(self):
        self._consumer: AIOKafkaConsumer | None = None
        self._producer: KafkaProducer = KafkaProducer()
        self._running = False

    async def start(self):
        self._consumer = AIOKafkaConsumer(
            settings.KAFKA_TRANSACTION_TOPIC,
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=settings.KAFKA_CONSUMER_GROUP,
            value_deserializer=lambda v: json.loads(v.decode("utf-8")),
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            auto_commit_interval_ms=1_000,
        )
        await self._consumer.start()
        await self._producer.start()
        self._running = True
        logger.info("Kafka consumer started — group=%s", settings.KAFKA_CONSUMER_GROUP)

    async def stop(self):
        self._running = False
        if self._consumer:
            await self._consumer.stop()
        await self._producer.stop()
        logger.info("Kafka consumer stopped.")

    async def run(self):
        """Main loop — one message, one transaction."""
        await self.start()
        try:
            async for msg in self._consumer:
                if not self._running:
                    break
                logger.debug(
                    "Kafka recv ← topic=%s partition=%d offset=%d",
                    msg.topic, msg.partition, msg.offset,
                )
                try:
                    await self._process_message(msg.value)
                except Exception as exc:
                    logger.error(
                        "Failed to ingest message offset=%d: %s", msg.offset, exc, exc_info=True,
                    )
        finally:
            await self.stop()

    async def _process_message(self, payload: Dict[str, Any]):
        from frauddesk.models.schemas import TransactionCreate
        from frauddesk.services.alerting import notify_transaction_flagged
        from frauddesk.services.db import AsyncSessionLocal
        from frauddesk.services.scorer import ingest_transaction

        body = TransactionCreate.model_validate(payload)
        async with AsyncSessionLocal() as db:
            txn, alerts = await ingest_transaction(db, body, actor="kafka")
            await db.commit()

        if alerts:
            await notify_transaction_flagged(txn, alerts[0], kafka_producer=self._producer)

        await self._producer.send(
            topic=settings.KAFKA_SCORED_TOPIC,
            value=scored_event(txn, alerts),
            key=txn.id,
        )
        logger.info("Scored event published → topic=%s txn=%s", settings.KAFKA_SCORED_TOPIC, txn.id)


def scored_event(txn, alerts) -> Dict[str, Any]:
    return {
        "transaction_id": txn.id,
        "sender_account_number": txn.sender_account_number,
        "receiver_account_number": txn.receiver_account_number,
        "amount": str(txn.amount),
        "risk_score": txn.risk_score,
        "is_flagged": txn.is_flagged,
        "status": txn.status,
        "alerts": [
            {"id": a.id, "severity": a.severity, "rule_name": a.rule_name}
            for a in alerts
        ],
    }


if __name__ == "__main__":
    import asyncio

    from frauddesk.services.db import init_db
    from frauddesk.services.observability import setup_logging

    async def _main():
        setup_logging()
        await init_db()
        await KafkaConsumer().run()

    asyncio.run(_main())
