"""Tests for result models and cancellation tokens."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from sqlconsole.cancellation import CancellationToken, ExecutionCancelled
from sqlconsole.db.messages import MessageChannel, MessageSeverity, QueryMessage, ServerError
from sqlconsole.execution.models import (
    Cancelled,
    ColumnInfo,
    Failed,
    QueryResult,
    ResultSet,
    ScalarResult,
    Succeeded,
)


@pytest.fixture
def result_set() -> ResultSet:
    return ResultSet(
        columns=[ColumnInfo(name="id", data_type="int", ordinal=0), ColumnInfo(name="note", ordinal=1)],
        rows=[(1, "first"), (2, None)],
        rows_affected=2,
    )


class TestResultSet:

    def test_records_and_dataframe(self, result_set: ResultSet) -> None:
        assert result_set.to_records() == [{"id": 1, "note": "first"}, {"id": 2, "note": None}]

        frame = result_set.to_dataframe()
        assert list(frame.columns) == ["id", "note"]
        assert frame.iloc[1]["note"] is None

    def test_to_dict(self, result_set: ResultSet) -> None:
        data = result_set.to_dict()
        assert data["row_count"] == 2
        assert data["rows"][1] == [2, None]
        assert data["columns"][0]["name"] == "id"

    def test_empty(self) -> None:
        assert ResultSet(columns=[ColumnInfo(name="x")]).is_empty


class TestQueryResult:

    def test_flags_follow_outcome(self) -> None:
        assert not QueryResult(outcome=Succeeded()).has_errors
        assert QueryResult(outcome=Cancelled()).was_cancelled
        assert not QueryResult(outcome=Cancelled()).has_errors

        error = ServerError(message="boom", number=1, severity=16)
        failed = QueryResult(outcome=Failed(errors=(error,)))
        assert failed.has_errors
        assert failed.server_errors == (error,)

    def test_to_dict(self) -> None:
        result = QueryResult(
            messages=[QueryMessage(text="(1 row(s) returned)")],
            execution_plans=["<a/>", "<b/>"],
            execution_time=timedelta(milliseconds=1500),
        )

        data = result.to_dict()

        assert data["execution_plan"] == "<b/>"
        assert data["execution_time"] == 1.5
        assert data["messages"][0]["severity"] == "info"
        assert data["has_errors"] is False


class TestScalarResult:

    def test_error_message_prefers_records(self) -> None:
        error = ServerError(message="Divide by zero error encountered.", number=8134, severity=16, state=1, line=1)
        assert ScalarResult(outcome=Failed(errors=(error,))).error_message.startswith("Msg 8134")
        assert ScalarResult(outcome=Failed(reason="down")).error_message == "down"
        assert ScalarResult(value=3).error_message is None


class TestMessageChannel:

    def test_keeps_posting_order(self) -> None:
        channel = MessageChannel()
        channel.info("one")
        channel.warning("two")
        channel.error("three", line_number=4)

        messages = channel.close()

        assert [m.text for m in messages] == ["one", "two", "three"]
        assert messages[2].severity == MessageSeverity.ERROR
        assert messages[2].line_number == 4

    def test_closed_channel_drops_messages(self) -> None:
        channel = MessageChannel()
        channel.close()
        channel.info("late")

        assert channel.closed
        assert channel.snapshot() == []


class TestCancellationToken:

    def test_callbacks_run_once(self) -> None:
        token = CancellationToken()
        callback = Mock()
        token.register(callback)

        token.cancel()
        token.cancel()

        callback.assert_called_once()
        assert token.is_cancelled
        with pytest.raises(ExecutionCancelled):
            token.raise_if_cancelled()

    def test_late_registration_runs_immediately(self) -> None:
        token = CancellationToken()
        token.cancel()
        callback = Mock()

        token.register(callback)

        callback.assert_called_once()

    def test_unregister(self) -> None:
        token = CancellationToken()
        callback = Mock()
        unregister = token.register(callback)

        unregister()
        token.cancel()

        callback.assert_not_called()

    def test_link_propagates(self) -> None:
        parent, child = CancellationToken(), CancellationToken()
        child.link(parent)

        parent.cancel()

        assert child.is_cancelled

    def test_failing_callback_does_not_stop_others(self) -> None:
        token = CancellationToken()
        token.register(Mock(side_effect=RuntimeError("driver gone")))
        survivor = Mock()
        token.register(survivor)

        token.cancel()

        survivor.assert_called_once()
