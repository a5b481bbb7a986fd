"""Tests for durable request status and the audit log."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from notehub.constants import RequestStatus, TaskKind
from notehub.models import Request, RequestLog
from notehub.services.request_store import (
    AuditEntry,
    DatabaseRequestLogger,
    RequestNotFoundError,
    create_request,
    get_request,
    mark_cancelled,
    mark_finished,
    mark_processing,
)


def _session(found=None):
    """AsyncSession mock whose select returns ``found``."""
    db = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = found
    db.execute = AsyncMock(return_value=result)
    return db


def _request(**overrides):
    values = {
        "id": "req-1",
        "space_id": "space-1",
        "user_id": "jdoe",
        "type": "INPUT",
        "status": "PENDING",
        "input": "notes",
        "iterations": 0,
        "tokens_used": 0,
    }
    values.update(overrides)
    return Request(**values)


class SessionFactory:
    def __init__(self, db):
        self.db = db

    def __call__(self):
        return self

    async def __aenter__(self):
        return self.db

    async def __aexit__(self, *exc_info):
        return False


class TestRequestLifecycle:
    """Tests for the request row writes."""

    @pytest.mark.asyncio
    async def test_create_request(self):
        db = _session()

        request = await create_request(
            db, space_id="space-1", user_id="jdoe", kind=TaskKind.SEARCH, input_text="find budget"
        )

        db.add.assert_called_once_with(request)
        db.flush.assert_awaited_once()
        assert len(request.id) == 36
        assert request.type == "SEARCH"
        assert request.status == "PENDING"
        assert request.iterations == 0

    @pytest.mark.asyncio
    async def test_create_request_with_explicit_id(self):
        request = await create_request(
            _session(), "space-1", "jdoe", TaskKind.INPUT, "x", request_id="fixed-id"
        )
        assert request.id == "fixed-id"

    @pytest.mark.asyncio
    async def test_get_request_missing(self):
        with pytest.raises(RequestNotFoundError) as exc_info:
            await get_request(_session(found=None), "nope")
        assert exc_info.value.request_id == "nope"

    @pytest.mark.asyncio
    async def test_mark_processing(self):
        request = _request()

        await mark_processing(_session(found=request), "req-1")

        assert request.status == "PROCESSING"
        assert request.started_at is not None

    @pytest.mark.asyncio
    async def test_mark_finished(self):
        request = _request(status="PROCESSING")

        await mark_finished(
            _session(found=request), "req-1", RequestStatus.COMPLETED, result={"summary": "ok"}
        )

        assert request.status == "COMPLETED"
        assert request.result == {"summary": "ok"}
        assert request.error is None
        assert request.completed_at is not None

    @pytest.mark.asyncio
    async def test_mark_cancelled(self):
        request = _request()

        await mark_cancelled(_session(found=request), "req-1", "Cancelled by user")

        assert request.status == "CANCELLED"
        assert request.error == "Cancelled by user"


class TestAuditEntry:
    """Tests for AuditEntry."""

    def test_to_model(self):
        entry = AuditEntry(
            request_id="req-1",
            iteration=2,
            tool="add_file",
            params={"path": "/회의.md", "content": "x"},
            result='{"success": true}',
            success=True,
            duration_ms=15,
        )

        row = entry.to_model()

        assert isinstance(row, RequestLog)
        assert row.iteration == 2
        assert row.tool == "add_file"
        assert json.loads(row.params) == {"path": "/회의.md", "content": "x"}
        assert "회의" in row.params
        assert row.duration_ms == 15


class TestDatabaseRequestLogger:
    """Tests for the best-effort audit sink."""

    @pytest.mark.asyncio
    async def test_log_commits(self):
        db = _session()
        request_logger = DatabaseRequestLogger(SessionFactory(db))

        await request_logger.log(
            AuditEntry("req-1", 1, "list_folder", {"path": "/"}, '{"success": true}', True)
        )

        row = db.add.call_args.args[0]
        assert row.tool == "list_folder"
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_log_failure_swallowed(self):
        db = _session()
        db.commit.side_effect = ConnectionError("db down")
        request_logger = DatabaseRequestLogger(SessionFactory(db))

        await request_logger.log(AuditEntry("req-1", 1, "list_folder", {}, "{}", True))

    @pytest.mark.asyncio
    async def test_update_progress(self):
        db = _session()
        request_logger = DatabaseRequestLogger(SessionFactory(db))

        await request_logger.update_progress("req-1", 4, 5120)

        db.execute.assert_awaited_once()
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_progress_failure_swallowed(self):
        db = _session()
        db.execute.side_effect = ConnectionError("db down")
        request_logger = DatabaseRequestLogger(SessionFactory(db))

        await request_logger.update_progress("req-1", 4, 5120)

        db.commit.assert_not_awaited()
