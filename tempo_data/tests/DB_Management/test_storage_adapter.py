# test_storage_adapter.py
#
#
# Imports
import asyncio
#
# Third-Party Imports
import pytest
from hypothesis import HealthCheck, given, settings, strategies as st
#
# Local Imports
from tempo_data.app.core.DB_Management.backends import DesktopSQLiteBackend
from tempo_data.app.core.DB_Management.exceptions import ConstraintError, InputError
from tempo_data.app.core.DB_Management.schema import ColumnType, table
from tempo_data.app.core.DB_Management.storage_adapter import StorageAdapter
#
#######################################################################################################################
#
# Functions:

NAMED = table("named", lambda t: (
    t.column("name", ColumnType.TEXT)
     .column("done", ColumnType.BOOLEAN, default=False)
     .column("meta", ColumnType.JSONB)
))


class TestInsert:
    @pytest.mark.asyncio
    async def test_insert_scenario(self, memory_backend):
        storage = StorageAdapter(memory_backend, {"named": NAMED})
        await storage.initialize()

        record_id = await storage.insert("named", {"name": "x"})
        row = await storage.find_by_id("named", record_id)

        assert row["id"] == record_id
        assert row["name"] == "x"
        assert row["synced"] is False
        assert row["deleted"] is False
        assert row["created_at"] == row["updated_at"]
        assert row["created_at"] > 0

    @pytest.mark.asyncio
    async def test_system_fields_are_overridden(self, adapter, session_data):
        record_id = await adapter.insert("pomodoro_sessions", {
            **session_data(), "id": "mine", "synced": True, "deleted": True, "created_at": 1,
        })
        row = await adapter.find_by_id("pomodoro_sessions", record_id)
        assert record_id != "mine"
        assert row["synced"] is False and row["deleted"] is False
        assert row["created_at"] > 1

    @pytest.mark.asyncio
    async def test_defaults_applied(self, adapter, session_data):
        record_id = await adapter.insert("pomodoro_sessions", session_data())
        row = await adapter.find_by_id("pomodoro_sessions", record_id)
        assert row["status"] == "active"
        assert row["pause_count"] == 0
        assert row["completed_at"] is None

    @pytest.mark.asyncio
    async def test_unique_violation_propagates(self, adapter):
        await adapter.insert("pomodoro_log", {"log_date": "2024-05-01", "target_sessions": 8})
        with pytest.raises(ConstraintError) as exc_info:
            await adapter.insert("pomodoro_log", {"log_date": "2024-05-01", "target_sessions": 4})
        assert exc_info.value.table == "pomodoro_log"
        assert await adapter.count("pomodoro_log") == 1

    @pytest.mark.asyncio
    async def test_not_null_violation_propagates(self, adapter):
        with pytest.raises(ConstraintError):
            await adapter.insert("pomodoro_log", {"log_date": "2024-05-02"})

    @pytest.mark.asyncio
    async def test_unknown_table_and_column(self, adapter):
        with pytest.raises(InputError):
            await adapter.insert("nope", {})
        with pytest.raises(InputError):
            await adapter.insert("pomodoro_log", {"log_date": "2024-05-02", "target_sessions": 1, "extra": 1})

    @pytest.mark.asyncio
    async def test_bool_and_json_round_trip(self, memory_backend):
        storage = StorageAdapter(memory_backend, {"named": NAMED})
        await storage.initialize()
        record_id = await storage.insert("named", {"name": "j", "done": True, "meta": {"tags": ["a"]}})

        row = await storage.find_by_id("named", record_id)
        assert row["done"] is True
        assert row["meta"] == {"tags": ["a"]}
        raw = await storage.query_raw("SELECT done, meta FROM named WHERE id = ?", (record_id,))
        assert raw == [{"done": 1, "meta": '{"tags": ["a"]}'}]


class TestUpdateDelete:
    @pytest.mark.asyncio
    async def test_update_stamps_and_dirties(self, adapter, session_data):
        record_id = await adapter.insert("pomodoro_sessions", session_data())
        await adapter.mark_as_synced("pomodoro_sessions", [record_id])
        before = await adapter.find_by_id("pomodoro_sessions", record_id)
        await asyncio.sleep(0.002)

        assert await adapter.update("pomodoro_sessions", record_id, {"status": "completed"}) is True
        after = await adapter.find_by_id("pomodoro_sessions", record_id)

        assert after["status"] == "completed"
        assert after["synced"] is False
        assert after["updated_at"] > before["updated_at"]
        assert after["created_at"] == before["created_at"]
        assert after["session_number"] == before["session_number"]

    @pytest.mark.asyncio
    async def test_update_missing_id_is_noop(self, adapter):
        assert await adapter.update("pomodoro_sessions", "missing", {"status": "x"}) is False

    @pytest.mark.asyncio
    async def test_update_rejects_system_fields(self, adapter, session_data):
        record_id = await adapter.insert("pomodoro_sessions", session_data())
        with pytest.raises(InputError):
            await adapter.update("pomodoro_sessions", record_id, {"synced": True})

    @pytest.mark.asyncio
    async def test_soft_delete_visibility(self, adapter, session_data):
        keep = await adapter.insert("pomodoro_sessions", session_data(1))
        gone = await adapter.insert("pomodoro_sessions", session_data(2))
        await adapter.mark_as_synced("pomodoro_sessions", [keep, gone])

        assert await adapter.delete("pomodoro_sessions", gone) is True

        assert await adapter.find_by_id("pomodoro_sessions", gone) is None
        assert [r["id"] for r in await adapter.find_all("pomodoro_sessions")] == [keep]
        assert await adapter.count("pomodoro_sessions") == 1

        unsynced = await adapter.find_unsynced("pomodoro_sessions")
        assert [r["id"] for r in unsynced] == [gone]
        assert unsynced[0]["deleted"] is True

        tombstone = await adapter.find_by_id("pomodoro_sessions", gone, include_deleted=True)
        assert tombstone["deleted"] is True

        await adapter.mark_as_synced("pomodoro_sessions", [gone])
        assert await adapter.find_unsynced("pomodoro_sessions") == []
        assert await adapter.find_by_id("pomodoro_sessions", gone) is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_find_all_default_order_is_newest_first(self, adapter, session_data):
        ids = []
        for n in range(3):
            ids.append(await adapter.insert("pomodoro_sessions", session_data(n)))
            await asyncio.sleep(0.002)
        rows = await adapter.find_all("pomodoro_sessions")
        assert [r["id"] for r in rows] == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_conditions_order_limit_offset(self, adapter, session_data):
        for n in range(5):
            await adapter.insert("pomodoro_sessions", session_data(n, status="completed" if n % 2 else "active"))

        rows = await adapter.find_all("pomodoro_sessions", {"status": "active"},
                                      order_by="session_number", order_dir="asc")
        assert [r["session_number"] for r in rows] == [0, 2, 4]

        page = await adapter.find_all("pomodoro_sessions", order_by="session_number", order_dir="ASC",
                                      limit=2, offset=1)
        assert [r["session_number"] for r in page] == [1, 2]

        tail = await adapter.find_all("pomodoro_sessions", order_by="session_number", offset=3)
        assert [r["session_number"] for r in tail] == [1, 0]

        assert await adapter.count("pomodoro_sessions", {"status": "completed"}) == 2

    @pytest.mark.asyncio
    async def test_none_condition_matches_null(self, adapter, session_data):
        open_id = await adapter.insert("pomodoro_sessions", session_data(1))
        await adapter.insert("pomodoro_sessions", session_data(2, completed_at=1714550999000))
        rows = await adapter.find_all("pomodoro_sessions", {"completed_at": None})
        assert [r["id"] for r in rows] == [open_id]

    @pytest.mark.asyncio
    async def test_invalid_order_inputs(self, adapter):
        with pytest.raises(InputError):
            await adapter.find_all("pomodoro_sessions", order_by="created_at; DROP TABLE x")
        with pytest.raises(InputError):
            await adapter.find_all("pomodoro_sessions", order_dir="SIDEWAYS")
        with pytest.raises(InputError):
            await adapter.count("pomodoro_sessions", {"bogus": 1})

    @pytest.mark.asyncio
    async def test_find_unsynced_oldest_first(self, adapter, session_data):
        first = await adapter.insert("pomodoro_sessions", session_data(1))
        await asyncio.sleep(0.002)
        second = await adapter.insert("pomodoro_sessions", session_data(2))
        await asyncio.sleep(0.002)
        await adapter.update("pomodoro_sessions", first, {"pause_count": 1})

        assert [r["id"] for r in await adapter.find_unsynced("pomodoro_sessions")] == [second, first]
        assert await adapter.count_unsynced("pomodoro_sessions") == 2

    @pytest.mark.asyncio
    async def test_mark_as_synced_empty_is_noop(self, adapter, session_data):
        await adapter.insert("pomodoro_sessions", session_data())
        assert await adapter.mark_as_synced("pomodoro_sessions", []) == 0
        assert await adapter.count_unsynced("pomodoro_sessions") == 1


class TestRemoteMaterialisation:
    @pytest.mark.asyncio
    async def test_insert_remote_preserves_remote_fields(self, adapter):
        record = {
            "id": "remote-1", "created_at": 100, "updated_at": 200, "deleted": False, "synced": True,
            "log_date": "2024-01-01", "target_sessions": 6, "server_only": "ignored",
        }
        await adapter.insert_remote("pomodoro_log", record)
        row = await adapter.find_by_id("pomodoro_log", "remote-1")
        assert (row["created_at"], row["updated_at"]) == (100, 200)
        assert row["synced"] is True
        assert "server_only" not in row

    @pytest.mark.asyncio
    async def test_overwrite_remote_replaces_fields(self, adapter):
        log_id = await adapter.insert("pomodoro_log", {"log_date": "2024-01-02", "target_sessions": 8})
        await adapter.overwrite_remote("pomodoro_log", {
            "id": log_id, "updated_at": 9_999_999_999_999, "deleted": True, "target_sessions": 3,
        })
        row = await adapter.find_by_id("pomodoro_log", log_id, include_deleted=True)
        assert row["target_sessions"] == 3
        assert row["deleted"] is True
        assert row["synced"] is True
        assert row["log_date"] == "2024-01-02"

    @pytest.mark.asyncio
    async def test_null_remote_flags_become_defaults(self, adapter):
        await adapter.insert_remote("pomodoro_streak", {
            "id": "streak-1", "created_at": None, "updated_at": 500, "deleted": None, "current_streak": 2,
        })
        row = await adapter.find_by_id("pomodoro_streak", "streak-1")
        assert row is not None
        assert row["deleted"] is False
        assert row["created_at"] == 500

        await adapter.overwrite_remote("pomodoro_streak", {
            "id": "streak-1", "created_at": None, "updated_at": 600, "deleted": None, "current_streak": 3,
        })
        row = await adapter.find_by_id("pomodoro_streak", "streak-1")
        assert (row["created_at"], row["updated_at"]) == (500, 600)
        assert row["current_streak"] == 3
        assert row["deleted"] is False

    @pytest.mark.asyncio
    async def test_remote_record_without_id_rejected(self, adapter):
        with pytest.raises(InputError):
            await adapter.insert_remote("pomodoro_log", {"updated_at": 1, "log_date": "2024-01-03"})


# Dirty-flag property: any local mutation leaves the record unsynced until mark_as_synced names it.

_operations = st.lists(
    st.sampled_from(["update", "delete", "mark", "mark_other"]),
    min_size=1,
    max_size=12,
)


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(ops=_operations)
def test_dirty_flag_property(ops, session_data):
    async def scenario():
        storage = StorageAdapter(DesktopSQLiteBackend(":memory:"))
        await storage.initialize()
        try:
            record_id = await storage.insert("pomodoro_sessions", session_data(1))
            other_id = await storage.insert("pomodoro_sessions", session_data(2))
            expected_synced = False
            for op in ops:
                if op == "update":
                    await storage.update("pomodoro_sessions", record_id, {"pause_count": 1})
                    expected_synced = False
                elif op == "delete":
                    await storage.delete("pomodoro_sessions", record_id)
                    expected_synced = False
                elif op == "mark":
                    await storage.mark_as_synced("pomodoro_sessions", [record_id])
                    expected_synced = True
                else:
                    await storage.mark_as_synced("pomodoro_sessions", [other_id])
                row = await storage.find_by_id("pomodoro_sessions", record_id, include_deleted=True)
                assert row["synced"] is expected_synced
        finally:
            await storage.close()

    asyncio.run(scenario())
