"""Tests for MessageBatchConsumer commit, rewind and DLQ routing."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiokafka.structs import ConsumerRecord, TopicPartition

from content_pipeline.common.batch_consumer import MessageBatchConsumer
from content_pipeline.common.types import BatchResult, PipelineMessage
from core.errors.exceptions import (
    PayloadValidationError,
    QueuePublishError,
    RedeliveryExhaustedError,
    TransientStoreError,
)
from core.resilience.retry import RetryConfig


def _make_kafka_mock(assignment=None):
    """Create a mock AIOKafkaConsumer with sync/async methods set correctly."""
    mock = Mock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.commit = AsyncMock()
    mock.getmany = AsyncMock(return_value={})
    mock.seek = Mock()
    mock.assignment = Mock(return_value=assignment or set())
    return mock


def _make_consumer_record(topic="content.changes", partition=0, offset=0, key=b"k", value=b"v"):
    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1000,
        timestamp_type=0,
        key=key,
        value=value,
        headers=[],
        checksum=None,
        serialized_key_size=len(key),
        serialized_value_size=len(value),
    )


def _message(partition=0, offset=0) -> PipelineMessage:
    return PipelineMessage(
        topic="content.changes", partition=partition, offset=offset, timestamp=0, value=b"{}"
    )


@pytest.fixture
def dlq():
    with patch("content_pipeline.common.batch_consumer.DLQProducer") as dlq_cls:
        producer = dlq_cls.return_value
        producer.send = AsyncMock()
        producer.stop = AsyncMock()
        yield producer


@pytest.fixture
def make_consumer(content_config, dlq):
    def factory(handler, **kwargs):
        consumer = MessageBatchConsumer(
            config=content_config,
            domain="content",
            worker_name="upsert_consumer",
            topics=["content.changes"],
            batch_handler=handler,
            **kwargs,
        )
        consumer._consumer = _make_kafka_mock()
        return consumer

    return factory


class TestMessageBatchConsumerInit:

    def test_raises_on_empty_topics(self, content_config):
        with pytest.raises(ValueError, match="At least one topic"):
            MessageBatchConsumer(
                config=content_config,
                domain="content",
                worker_name="upsert_consumer",
                topics=[],
                batch_handler=AsyncMock(),
            )

    def test_group_and_worker_id(self, make_consumer):
        consumer = make_consumer(AsyncMock(), instance_id="2")

        assert consumer.group_id == "content-upsert_consumer"
        assert consumer.worker_id.startswith("content-upsert_consumer-2")

    def test_kafka_config_disables_auto_commit(self, make_consumer):
        cfg = make_consumer(AsyncMock(), batch_size=25)._build_kafka_config()

        assert cfg["enable_auto_commit"] is False
        assert cfg["max_poll_records"] == 25
        assert cfg["group_id"] == "content-upsert_consumer"
        assert cfg["bootstrap_servers"] == "localhost:9092"


class TestMessageBatchConsumerStart:

    @pytest.mark.asyncio
    async def test_start_runs_loop_until_stopped(self, make_consumer):
        consumer = make_consumer(AsyncMock())
        kafka = _make_kafka_mock()

        with (
            patch("content_pipeline.common.batch_consumer.AIOKafkaConsumer", return_value=kafka),
            patch.object(consumer, "_consume_loop", AsyncMock()) as loop,
        ):
            await consumer.start()

        kafka.start.assert_awaited_once()
        loop.assert_awaited_once()
        assert not consumer.is_running

    @pytest.mark.asyncio
    async def test_stop_stops_consumer_and_dlq(self, make_consumer, dlq):
        consumer = make_consumer(AsyncMock())
        kafka = consumer._consumer

        await consumer.stop()
        await consumer.stop()

        kafka.stop.assert_awaited_once()
        dlq.stop.assert_awaited_once()


class TestFlushBatch:

    @pytest.mark.asyncio
    async def test_commit_advances_past_last_offset_per_partition(self, make_consumer):
        consumer = make_consumer(AsyncMock(return_value=BatchResult(commit=True)))
        messages = [_message(0, 5), _message(0, 6), _message(1, 9)]

        committed = await consumer._flush_batch(messages)

        assert committed
        consumer._consumer.commit.assert_awaited_once_with(
            {
                TopicPartition("content.changes", 0): 7,
                TopicPartition("content.changes", 1): 10,
            }
        )

    @pytest.mark.asyncio
    async def test_plain_bool_result_accepted(self, make_consumer):
        consumer = make_consumer(AsyncMock(return_value=True))

        assert await consumer._flush_batch([_message()])

    @pytest.mark.asyncio
    async def test_no_commit_rewinds_to_first_offset(self, make_consumer):
        consumer = make_consumer(AsyncMock(return_value=BatchResult(commit=False)))
        messages = [_message(0, 5), _message(0, 6)]

        committed = await consumer._flush_batch(messages)

        assert not committed
        consumer._consumer.commit.assert_not_awaited()
        consumer._consumer.seek.assert_called_once_with(TopicPartition("content.changes", 0), 5)
        assert consumer._consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_handler_exception_rewinds(self, make_consumer):
        consumer = make_consumer(AsyncMock(side_effect=RuntimeError("boom")))

        assert not await consumer._flush_batch([_message(0, 3)])
        consumer._consumer.seek.assert_called_once()

    @pytest.mark.asyncio
    async def test_permanent_failures_dead_lettered_before_commit(self, make_consumer, dlq):
        bad = _message(0, 2)
        error = PayloadValidationError("bad json")
        consumer = make_consumer(
            AsyncMock(return_value=BatchResult(commit=True, permanent_failures=[(bad, error)]))
        )

        assert await consumer._flush_batch([_message(0, 1), bad])

        dlq.send.assert_awaited_once()
        sent_message, sent_error, category = dlq.send.call_args.args
        assert sent_message is bad
        assert sent_error is error
        assert category.value == "permanent"
        consumer._consumer.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dlq_failure_blocks_commit(self, make_consumer, dlq):
        dlq.send.side_effect = QueuePublishError("dlq down")
        bad = _message(0, 2)
        consumer = make_consumer(
            AsyncMock(
                return_value=BatchResult(
                    commit=True, permanent_failures=[(bad, PayloadValidationError("x"))]
                )
            )
        )

        assert not await consumer._flush_batch([bad])
        consumer._consumer.commit.assert_not_awaited()
        consumer._consumer.seek.assert_called_once()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, make_consumer):
        handler = AsyncMock(side_effect=[BatchResult(commit=False), BatchResult(commit=True)])
        consumer = make_consumer(handler)

        await consumer._flush_batch([_message()])
        await consumer._flush_batch([_message()])

        assert consumer._consecutive_failures == 0


    @pytest.mark.asyncio
    async def test_rewound_batch_not_dead_lettered(self, make_consumer, dlq):
        bad = _message(0, 2)
        consumer = make_consumer(
            AsyncMock(
                return_value=BatchResult(
                    commit=False, permanent_failures=[(bad, PayloadValidationError("x"))]
                )
            ),
            max_redeliveries=5,
        )

        for _ in range(3):
            assert not await consumer._flush_batch([_message(0, 1), bad])

        dlq.send.assert_not_awaited()
        assert consumer._consecutive_failures == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_sent_once_after_redeliveries(self, make_consumer, dlq):
        bad = _message(0, 2)
        failures = [(bad, PayloadValidationError("x"))]
        handler = AsyncMock(
            side_effect=[
                BatchResult(commit=False, permanent_failures=failures),
                BatchResult(commit=False, permanent_failures=failures),
                BatchResult(commit=True, permanent_failures=failures),
            ]
        )
        consumer = make_consumer(handler)

        for _ in range(3):
            await consumer._flush_batch([_message(0, 1), bad])

        dlq.send.assert_awaited_once()
        consumer._consumer.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redelivery_bound_dead_letters_and_commits(self, make_consumer, dlq):
        ok = _message(0, 1)
        stuck = _message(0, 2)
        cause = TransientStoreError("db down")
        consumer = make_consumer(
            AsyncMock(return_value=BatchResult(commit=False, retry_failures=[(stuck, cause)])),
            max_redeliveries=2,
        )

        assert not await consumer._flush_batch([ok, stuck])
        assert not await consumer._flush_batch([ok, stuck])
        dlq.send.assert_not_awaited()

        assert await consumer._flush_batch([ok, stuck])

        dlq.send.assert_awaited_once()
        sent_message, sent_error, category = dlq.send.call_args.args
        assert sent_message is stuck
        assert isinstance(sent_error, RedeliveryExhaustedError)
        assert sent_error.attempts == 3
        assert sent_error.cause is cause
        assert category.value == "permanent"
        consumer._consumer.commit.assert_awaited_once()
        assert consumer._consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_exhaustion_without_retry_details_covers_batch(self, make_consumer, dlq):
        ok = _message(0, 1)
        bad = _message(0, 2)
        consumer = make_consumer(
            AsyncMock(
                return_value=BatchResult(
                    commit=False, permanent_failures=[(bad, PayloadValidationError("x"))]
                )
            ),
            max_redeliveries=0,
        )

        assert await consumer._flush_batch([ok, bad])

        sent = {id(call.args[0]): call.args[1] for call in dlq.send.call_args_list}
        assert len(sent) == 2
        assert isinstance(sent[id(bad)], PayloadValidationError)
        assert isinstance(sent[id(ok)], RedeliveryExhaustedError)

    @pytest.mark.asyncio
    async def test_handler_exception_exhaustion_keeps_cause(self, make_consumer, dlq):
        boom = RuntimeError("boom")
        consumer = make_consumer(AsyncMock(side_effect=boom), max_redeliveries=0)

        assert await consumer._flush_batch([_message(0, 3)])

        error = dlq.send.call_args.args[1]
        assert isinstance(error, RedeliveryExhaustedError)
        assert error.cause is boom

    @pytest.mark.asyncio
    async def test_exhaustion_with_dlq_down_still_rewinds(self, make_consumer, dlq):
        dlq.send.side_effect = QueuePublishError("dlq down")
        consumer = make_consumer(AsyncMock(return_value=BatchResult(commit=False)), max_redeliveries=0)

        assert not await consumer._flush_batch([_message(0, 4)])

        consumer._consumer.commit.assert_not_awaited()
        consumer._consumer.seek.assert_called_once_with(TopicPartition("content.changes", 0), 4)
        assert consumer._consecutive_failures == 1


class TestFetchAndProcess:

    @pytest.mark.asyncio
    async def test_records_converted_and_handled(self, make_consumer):
        handler = AsyncMock(return_value=BatchResult(commit=True))
        consumer = make_consumer(handler)
        tp = TopicPartition("content.changes", 0)
        consumer._consumer.getmany.return_value = {
            tp: [_make_consumer_record(offset=0), _make_consumer_record(offset=1)]
        }

        await consumer._fetch_and_process_batch()

        messages = handler.call_args.args[0]
        assert [m.offset for m in messages] == [0, 1]
        assert messages[0].key == b"k"

    @pytest.mark.asyncio
    async def test_empty_poll_skips_handler(self, make_consumer):
        handler = AsyncMock()
        consumer = make_consumer(handler)

        await consumer._fetch_and_process_batch()

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_batch_backs_off(self, make_consumer):
        consumer = make_consumer(
            AsyncMock(return_value=BatchResult(commit=False)),
            redelivery_backoff=RetryConfig(max_attempts=1, base_delay=0.5, max_delay=30.0),
        )
        consumer._consumer.getmany.return_value = {
            TopicPartition("content.changes", 0): [_make_consumer_record()]
        }

        with patch("content_pipeline.common.batch_consumer.asyncio.sleep", AsyncMock()) as sleep:
            await consumer._fetch_and_process_batch()

        sleep.assert_awaited_once()
        assert 0.25 <= sleep.call_args.args[0] <= 0.5
