"""Tests for batch acknowledgment reconciliation."""

import pytest

from sqs_consumer.queues.ack import AckReconciler
from sqs_consumer.queues.errors import (
    AllMessagesInvalidError,
    DeleteEntryFailedError,
    ErrorKind,
    QueueError,
)
from sqs_consumer.queues.handler import CallbackDispatcher
from sqs_consumer.queues.schemas import BatchDeleteResult, DeleteStatus, FailedEntry


@pytest.fixture
def acks(transport, handler) -> AckReconciler:
    return AckReconciler(transport, CallbackDispatcher(handler))


def _reply(succeed: set[int], fail: dict[int, str] | None = None):
    """delete_batch side effect: succeed/fail entries by position."""
    fail = fail or {}

    async def delete_batch(entries):
        return BatchDeleteResult(
            successful=[e.correlation_id for i, e in enumerate(entries) if i in succeed],
            failed=[
                FailedEntry(e.correlation_id, code, "rejected", sender_fault=True)
                for i, e in enumerate(entries)
                if i in fail
                for code in [fail[i]]
            ],
        )

    return delete_batch


class TestDeleteOne:

    @pytest.mark.asyncio
    async def test_success_fires_on_processed(self, acks, transport, handler, make_message):
        message = make_message()

        outcome = await acks.delete_one(message)

        transport.delete.assert_awaited_once_with("rh-1")
        handler.on_processed.assert_awaited_once_with(message)
        handler.on_error.assert_not_awaited()
        assert outcome.acknowledged

    @pytest.mark.asyncio
    async def test_failure_reports_delete_message(self, acks, transport, handler, make_message):
        error = QueueError("delete_message", "ReceiptHandleIsInvalid: expired")
        transport.delete.side_effect = error
        message = make_message()

        outcome = await acks.delete_one(message)

        handler.on_error.assert_awaited_once_with(ErrorKind.DELETE_MESSAGE, error, message)
        handler.on_processed.assert_not_awaited()
        assert outcome.status == DeleteStatus.FAILED


class TestDeleteBatch:
    """Tests for AckReconciler.delete_batch."""

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(self, acks, transport, handler):
        assert await acks.delete_batch([]) == []

        transport.delete_batch.assert_not_awaited()
        handler.on_error.assert_not_awaited()
        handler.on_processed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_invalid_reports_once_with_full_input(
        self, acks, transport, handler, make_message
    ):
        invalid = [make_message(1, receipt_handle=None), make_message(2, receipt_handle="")]

        outcomes = await acks.delete_batch(invalid)

        transport.delete_batch.assert_not_awaited()
        handler.on_error.assert_awaited_once()
        kind, error, context = handler.on_error.await_args.args
        assert kind == ErrorKind.DELETE_MESSAGE_BATCH
        assert isinstance(error, AllMessagesInvalidError)
        assert error.count == 2
        assert context == invalid
        assert [o.status for o in outcomes] == [DeleteStatus.SKIPPED] * 2

    @pytest.mark.asyncio
    async def test_all_succeed(self, acks, transport, handler, messages):
        transport.delete_batch.side_effect = _reply(succeed={0, 1, 2})

        outcomes = await acks.delete_batch(messages)

        transport.delete_batch.assert_awaited_once()
        assert [c.args[0] for c in handler.on_processed.await_args_list] == messages
        handler.on_error.assert_not_awaited()
        assert all(o.acknowledged for o in outcomes)

    @pytest.mark.asyncio
    async def test_entries_carry_unique_ids_and_handles(self, acks, transport, messages):
        transport.delete_batch.side_effect = _reply(succeed={0, 1, 2})

        await acks.delete_batch(messages)

        entries = transport.delete_batch.await_args.args[0]
        assert [e.receipt_handle for e in entries] == ["rh-1", "rh-2", "rh-3"]
        assert len({e.correlation_id for e in entries}) == 3

    @pytest.mark.asyncio
    async def test_partial_failure(self, acks, transport, handler, make_message):
        ok, bad = make_message(1), make_message(2)
        transport.delete_batch.side_effect = _reply(
            succeed={0}, fail={1: "ReceiptHandleIsInvalid"}
        )

        outcomes = await acks.delete_batch([ok, bad])

        handler.on_processed.assert_awaited_once_with(ok)
        handler.on_error.assert_awaited_once()
        kind, error, context = handler.on_error.await_args.args
        assert kind == ErrorKind.DELETE_MESSAGE_BATCH
        assert isinstance(error, DeleteEntryFailedError)
        assert error.entry.code == "ReceiptHandleIsInvalid"
        assert error.entry.sender_fault is True
        assert error.mapped is True
        assert context is bad
        assert {o.message.message_id: o.status for o in outcomes} == {
            "msg-1": DeleteStatus.ACKNOWLEDGED,
            "msg-2": DeleteStatus.FAILED,
        }

    @pytest.mark.asyncio
    async def test_request_failure_reports_valid_messages_once(
        self, acks, transport, handler, make_message
    ):
        valid = [make_message(1), make_message(2)]
        invalid = make_message(3, receipt_handle=None)
        error = QueueError("delete_message_batch", "ServiceUnavailable: try later")
        transport.delete_batch.side_effect = error

        outcomes = await acks.delete_batch([valid[0], invalid, valid[1]])

        handler.on_error.assert_awaited_once_with(ErrorKind.DELETE_MESSAGE_BATCH, error, valid)
        handler.on_processed.assert_not_awaited()
        assert [o.status for o in outcomes] == [
            DeleteStatus.FAILED,
            DeleteStatus.FAILED,
            DeleteStatus.SKIPPED,
        ]

    @pytest.mark.asyncio
    async def test_invalid_mixed_with_valid_is_skipped(
        self, acks, transport, handler, make_message
    ):
        valid = make_message(1)
        invalid = make_message(2, receipt_handle=None)
        transport.delete_batch.side_effect = _reply(succeed={0})

        outcomes = await acks.delete_batch([valid, invalid])

        entries = transport.delete_batch.await_args.args[0]
        assert len(entries) == 1
        handler.on_error.assert_not_awaited()
        assert [(o.message, o.status) for o in outcomes] == [
            (valid, DeleteStatus.ACKNOWLEDGED),
            (invalid, DeleteStatus.SKIPPED),
        ]

    @pytest.mark.asyncio
    async def test_unmapped_failure_reported_without_message(
        self, acks, transport, handler, messages
    ):
        async def delete_batch(entries):
            return BatchDeleteResult(
                successful=[e.correlation_id for e in entries],
                failed=[FailedEntry("not-a-sent-id", "InternalError")],
            )

        transport.delete_batch.side_effect = delete_batch

        await acks.delete_batch(messages)

        assert handler.on_processed.await_count == 3
        handler.on_error.assert_awaited_once()
        kind, error, context = handler.on_error.await_args.args
        assert kind == ErrorKind.DELETE_MESSAGE_BATCH
        assert error.mapped is False
        assert context is None

    @pytest.mark.asyncio
    async def test_large_input_is_chunked(self, acks, transport, make_message):
        transport.delete_batch.side_effect = _reply(succeed=set(range(10)))
        batch = [make_message(i) for i in range(12)]

        outcomes = await acks.delete_batch(batch)

        sizes = [len(c.args[0]) for c in transport.delete_batch.await_args_list]
        assert sizes == [10, 2]
        assert len(outcomes) == 12
        assert all(o.acknowledged for o in outcomes)

    @pytest.mark.asyncio
    async def test_on_processed_failure_reported(self, acks, transport, handler, make_message):
        message = make_message()
        error = RuntimeError("bookkeeping failed")
        handler.on_processed.side_effect = error
        transport.delete_batch.side_effect = _reply(succeed={0})

        outcomes = await acks.delete_batch([message])

        handler.on_error.assert_awaited_once_with(ErrorKind.ON_PROCESSED, error, message)
        assert outcomes[0].acknowledged

    @pytest.mark.asyncio
    @pytest.mark.parametrize("valid_first", [False, True])
    async def test_invalid_run_over_batch_limit_with_one_valid(
        self, acks, transport, handler, make_message, valid_first
    ):
        invalid = [make_message(i, receipt_handle=None) for i in range(10)]
        valid = make_message(99)
        batch = [valid] + invalid if valid_first else invalid + [valid]
        transport.delete_batch.side_effect = _reply(succeed={0})

        outcomes = await acks.delete_batch(batch)

        handler.on_error.assert_not_awaited()
        handler.on_processed.assert_awaited_once_with(valid)
        transport.delete_batch.assert_awaited_once()
        assert [e.receipt_handle for e in transport.delete_batch.await_args.args[0]] == ["rh-99"]
        assert [o.status for o in outcomes].count(DeleteStatus.SKIPPED) == 10

    @pytest.mark.asyncio
    async def test_failed_requests_reported_once_across_chunks(
        self, acks, transport, handler, make_message
    ):
        batch = [make_message(i) for i in range(15)]
        error = QueueError("delete_message_batch", "ServiceUnavailable: try later")
        transport.delete_batch.side_effect = error

        outcomes = await acks.delete_batch(batch)

        assert transport.delete_batch.await_count == 2
        handler.on_error.assert_awaited_once_with(ErrorKind.DELETE_MESSAGE_BATCH, error, batch)
        assert all(o.status == DeleteStatus.FAILED for o in outcomes)
