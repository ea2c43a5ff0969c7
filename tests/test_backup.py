"""Tests for backup runs: fetch, naming, storage, rotation and restore."""

import asyncio
import os
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from src.backup.history import HISTORY_FILENAME, BackupHistory
from src.backup.runner import BackupScheduler
from src.document import BackupSourceConfig, parse_document
from src.errors import BackupBusy, RestoreError, TransportError
from src.notify.notifier import Notifier, Outcome
from src.store.internal_log import InternalLog

URL = "https://site.test/backup"
RESTORE_URL = "https://site.test/restore"


def _dump(filename: str = "db.sql", body: bytes = b"CREATE TABLE t;") -> httpx.Response:
    return httpx.Response(200, content=body, headers={"Content-Disposition": f'attachment; filename="{filename}"'})


def _build(
    data_dir: str,
    internal_log: InternalLog,
    clock: Any,
    *,
    max_retained: int = 3,
    restore: str = RESTORE_URL,
    token: str = "",
) -> tuple[BackupScheduler, AsyncMock, BackupSourceConfig]:
    config = parse_document(
        f"""
        token = "{token}"

        [[backups]]
        description = "nightly-db"
        url = "{URL}"
        restore = "{restore}"
        max = {max_retained}
        interval = "d"
        time = 120
        """
    )
    notifier = AsyncMock(spec=Notifier)
    notifier.notify.return_value = Outcome(dispatched=True)
    scheduler = BackupScheduler(
        config.backups,
        notifier,
        internal_log,
        data_dir,
        auth_for=config.auth_for_source,
        download_timeout=5.0,
        clock=clock,
    )
    return scheduler, notifier, config.backups[0]


def _stored_files(directory: str) -> list[str]:
    if not os.path.isdir(directory):
        return []
    return sorted(f for f in os.listdir(directory) if f != HISTORY_FILENAME)


@pytest.fixture
def data_dir(tmp_path: Any) -> str:
    return str(tmp_path / "data")


class TestRunBackup:
    @respx.mock
    async def test_stores_file_and_record(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, notifier, source = _build(data_dir, internal_log, clock)

        record = await scheduler.run_backup(source)

        directory = os.path.join(data_dir, "nightly-db")
        assert record == {"filename": "db.sql", "timestamp": clock().isoformat(), "size": 15}
        with open(os.path.join(directory, "db.sql"), "rb") as f:
            assert f.read() == b"CREATE TABLE t;"
        assert scheduler.history("nightly-db") == [record]
        assert scheduler.last_success("nightly-db") == clock()
        assert internal_log.tail(1)[0]["message"] == "Backup of nightly-db stored as db.sql (15 bytes)"
        notifier.notify.assert_not_called()

    @respx.mock
    async def test_name_from_url_without_header(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=httpx.Response(200, content=b"zip"))
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)

        record = await scheduler.run_backup(source)

        assert record["filename"] == "backup"

    @respx.mock
    async def test_sends_bearer_token(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        route = respx.get(URL).mock(return_value=_dump())
        scheduler, _notifier, source = _build(data_dir, internal_log, clock, token="s3cret")

        _ = await scheduler.run_backup(source)

        assert route.calls.last.request.headers["Authorization"] == "Bearer s3cret"

    @respx.mock
    async def test_nightly_rotation_keeps_newest(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, notifier, source = _build(data_dir, internal_log, clock, max_retained=3)
        directory = os.path.join(data_dir, "nightly-db")

        names = []
        for _ in range(4):
            names.append((await scheduler.run_backup(source))["filename"])
            _ = clock.advance(days=1)

        assert names == ["db.sql", "db_0.sql", "db_1.sql", "db_2.sql"]
        assert _stored_files(directory) == ["db_0.sql", "db_1.sql", "db_2.sql"]
        assert [r["filename"] for r in scheduler.history("nightly-db")] == ["db_0.sql", "db_1.sql", "db_2.sql"]
        assert "Rotated out db.sql from nightly-db" in [e["message"] for e in internal_log.tail(5)]
        notifier.notify.assert_not_called()

    @respx.mock
    async def test_history_matches_files_after_many_runs(
        self, data_dir: str, internal_log: InternalLog, clock: Any
    ) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, _notifier, source = _build(data_dir, internal_log, clock, max_retained=2)
        directory = os.path.join(data_dir, "nightly-db")

        for _ in range(7):
            _ = await scheduler.run_backup(source)
            _ = clock.advance(hours=1)

        history = scheduler.history("nightly-db")
        assert len(history) == 2
        assert sorted(r["filename"] for r in history) == _stored_files(directory)

    @respx.mock
    async def test_non_2xx_leaves_nothing_behind(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=httpx.Response(500, content=b"oops"))
        scheduler, notifier, source = _build(data_dir, internal_log, clock)

        with pytest.raises(TransportError, match="500"):
            await scheduler.run_backup(source)

        directory = os.path.join(data_dir, "nightly-db")
        assert _stored_files(directory) == []
        assert scheduler.history("nightly-db") == []
        notifier.notify.assert_awaited_once()
        event = notifier.notify.call_args.args[0]
        assert event.subject == "Backup failed"
        assert "nightly-db" in event.reason
        assert internal_log.tail(1)[0]["severity"] == "error"

    @respx.mock
    async def test_timeout_is_a_transport_error(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(side_effect=httpx.ReadTimeout("slow"))
        scheduler, notifier, source = _build(data_dir, internal_log, clock)

        with pytest.raises(TransportError, match="timed out"):
            await scheduler.run_backup(source)

        assert _stored_files(os.path.join(data_dir, "nightly-db")) == []
        notifier.notify.assert_awaited_once()

    @respx.mock
    async def test_failure_keeps_previous_backups(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(side_effect=[_dump(), httpx.Response(503)])
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)

        _ = await scheduler.run_backup(source)
        with pytest.raises(TransportError):
            await scheduler.run_backup(source)

        assert _stored_files(os.path.join(data_dir, "nightly-db")) == ["db.sql"]
        assert len(scheduler.history("nightly-db")) == 1

    @respx.mock
    async def test_concurrent_trigger_is_rejected(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_dump(request: httpx.Request) -> httpx.Response:
            started.set()
            _ = await release.wait()
            return _dump()

        route = respx.get(URL).mock(side_effect=slow_dump)
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)

        first = asyncio.create_task(scheduler.run_backup(source))
        _ = await asyncio.wait_for(started.wait(), timeout=1.0)

        assert scheduler.is_running("nightly-db") is True
        with pytest.raises(BackupBusy):
            await scheduler.run_backup(source)

        release.set()
        record = await first

        assert route.call_count == 1
        assert record["filename"] == "db.sql"
        assert _stored_files(os.path.join(data_dir, "nightly-db")) == ["db.sql"]
        assert scheduler.is_running("nightly-db") is False

    @respx.mock
    async def test_history_survives_restart(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)
        record = await scheduler.run_backup(source)

        restarted, _notifier, _source = _build(data_dir, internal_log, clock)

        assert restarted.history("nightly-db") == [record]
        assert restarted.last_success("nightly-db") == clock()
        assert restarted.is_due(source, clock()) is False


class TestRotationFailures:
    @respx.mock
    async def test_undeletable_file_keeps_record_and_warns(
        self, data_dir: str, internal_log: InternalLog, clock: Any
    ) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, notifier, source = _build(data_dir, internal_log, clock, max_retained=1)
        real_remove = os.remove

        def fail_on_first_backup(path: str) -> None:
            if os.path.basename(path) == "db.sql":
                raise PermissionError("read-only")
            real_remove(path)

        _ = await scheduler.run_backup(source)
        with patch("src.backup.runner.os.remove", side_effect=fail_on_first_backup):
            _ = await scheduler.run_backup(source)

        assert [r["filename"] for r in scheduler.history("nightly-db")] == ["db.sql", "db_0.sql"]
        assert _stored_files(os.path.join(data_dir, "nightly-db")) == ["db.sql", "db_0.sql"]
        notifier.notify.assert_awaited_once()
        assert notifier.notify.call_args.args[0].subject == "Backup rotation failed"

        # The next successful run retries the eviction
        _ = await scheduler.run_backup(source)
        assert [r["filename"] for r in scheduler.history("nightly-db")] == ["db_1.sql"]
        assert _stored_files(os.path.join(data_dir, "nightly-db")) == ["db_1.sql"]

    @respx.mock
    async def test_already_missing_file_drops_record(
        self, data_dir: str, internal_log: InternalLog, clock: Any
    ) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        scheduler, notifier, source = _build(data_dir, internal_log, clock, max_retained=1)
        _ = await scheduler.run_backup(source)
        os.remove(os.path.join(data_dir, "nightly-db", "db.sql"))

        record = await scheduler.run_backup(source)

        assert scheduler.history("nightly-db") == [record]
        assert any("already missing" in e["message"] for e in internal_log.tail(5))
        notifier.notify.assert_not_called()


class TestRestore:
    @respx.mock
    async def test_uploads_stored_file(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        restore_route = respx.post(RESTORE_URL).mock(return_value=httpx.Response(200))
        scheduler, _notifier, source = _build(data_dir, internal_log, clock, token="s3cret")
        _ = await scheduler.run_backup(source)

        await scheduler.restore(source, "db.sql")

        request = restore_route.calls.last.request
        assert request.headers["Authorization"] == "Bearer s3cret"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="file"; filename="db.sql"' in request.content
        assert b"CREATE TABLE t;" in request.content
        assert internal_log.tail(1)[0]["message"] == "Successfully restored file db.sql from nightly-db"

    async def test_unknown_file(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)

        with pytest.raises(RestoreError, match="not a stored backup"):
            await scheduler.restore(source, "nope.sql")

    async def test_no_restore_route(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        scheduler, _notifier, source = _build(data_dir, internal_log, clock, restore="")

        with pytest.raises(RestoreError, match="No restore route"):
            await scheduler.restore(source, "db.sql")

    @respx.mock
    async def test_upload_failure_is_logged(self, data_dir: str, internal_log: InternalLog, clock: Any) -> None:
        _ = respx.get(URL).mock(return_value=_dump())
        _ = respx.post(RESTORE_URL).mock(return_value=httpx.Response(500))
        scheduler, _notifier, source = _build(data_dir, internal_log, clock)
        _ = await scheduler.run_backup(source)

        with pytest.raises(TransportError):
            await scheduler.restore(source, "db.sql")

        entry = internal_log.tail(1)[0]
        assert entry["message"].startswith("Failed to restore file db.sql from nightly-db")
        assert entry["severity"] == "error"


class TestBackupHistory:
    def test_load_missing_is_empty(self, tmp_path: Any) -> None:
        history = BackupHistory.load(str(tmp_path))

        assert len(history) == 0
        assert history.last_success() is None

    def test_save_and_load(self, tmp_path: Any) -> None:
        history = BackupHistory(str(tmp_path))
        history.append({"filename": "a.sql", "timestamp": "2026-03-10T02:00:00+00:00", "size": 3})
        history.save()

        loaded = BackupHistory.load(str(tmp_path))

        assert loaded.records == history.records
        assert loaded.find("a.sql") is not None
        assert loaded.last_success() is not None

    def test_corrupt_history_is_empty(self, tmp_path: Any) -> None:
        _ = (tmp_path / HISTORY_FILENAME).write_text("[not json")

        assert len(BackupHistory.load(str(tmp_path))) == 0
