import logging

import pytest

from planner.errors import AuthorizationError, ErrorKind, ValidationError

from .conftest import make_list, make_task


class TestTaskListCrud:
    def test_create_and_find_all_with_counts(self, services, ctx):
        work = make_list(services, ctx, "Work", color="#FF5722")
        make_task(services, ctx, "a", task_list_id=work["id"])
        make_task(services, ctx, "b", task_list_id=work["id"])

        lists = services.task_lists.find_all(None, ctx)
        assert [t["name"] for t in lists] == ["Work"]
        assert lists[0]["color"] == "#FF5722"
        assert lists[0]["task_count"] == 2

    def test_name_is_unique_per_user_ignoring_case(self, services, ctx, other_ctx):
        make_list(services, ctx, "Work")
        with pytest.raises(ValidationError) as exc:
            make_list(services, ctx, "work")
        assert exc.value.message == "Task list name already exists"
        # another user may reuse the name
        assert make_list(services, other_ctx, "Work")["user_id"] == "user-2"

    def test_invalid_color_is_a_validation_error(self, services, ctx):
        with pytest.raises(ValidationError) as exc:
            make_list(services, ctx, "Work", color="red")
        assert "Invalid color format" in exc.value.message
        assert exc.value.details["errors"]

    def test_find_all_is_owner_scoped(self, services, ctx, other_ctx):
        make_list(services, ctx, "Mine")
        make_list(services, other_ctx, "Theirs")
        assert [t["name"] for t in services.task_lists.find_all(None, other_ctx)] == ["Theirs"]

    def test_find_all_requires_user(self, services):
        with pytest.raises(AuthorizationError) as exc:
            services.task_lists.find_all(None, None)
        assert str(exc.value) == "AUTHORIZATION_ERROR: User ID required"

    def test_search_and_active_filters(self, services, ctx):
        work = make_list(services, ctx, "Work", description="office things")
        home = make_list(services, ctx, "Home")
        make_task(services, ctx, "open", task_list_id=work["id"])
        make_task(services, ctx, "done", task_list_id=home["id"], completed=True)

        assert [t["name"] for t in services.task_lists.find_all({"search": "OFFICE"}, ctx)] == ["Work"]
        assert [t["name"] for t in services.task_lists.find_all({"has_active_tasks": True}, ctx)] == ["Work"]
        assert [t["name"] for t in services.task_lists.find_all({"has_active_tasks": False}, ctx)] == ["Home"]

    def test_update_by_other_user_is_denied(self, services, ctx, other_ctx):
        work = make_list(services, ctx, "Work")
        with pytest.raises(AuthorizationError) as exc:
            services.task_lists.update(work["id"], {"name": "Stolen"}, other_ctx)
        assert exc.value.kind is ErrorKind.AUTHORIZATION
        assert services.task_lists.find_by_id(work["id"], ctx)["name"] == "Work"


class TestTaskListDelete:
    def test_deleting_the_only_list_fails(self, services, ctx):
        work = make_list(services, ctx, "Work", color="#FF5722")
        with pytest.raises(ValidationError) as exc:
            services.task_lists.delete(work["id"], ctx)
        assert str(exc.value) == "VALIDATION_ERROR: Cannot delete the only task list"
        assert services.task_lists.exists(work["id"], ctx)

    def test_deleting_the_only_general_list_fails_too(self, services, ctx):
        general = services.task_lists.get_default(ctx)
        make_task(services, ctx, "keep me", task_list_id=general["id"])
        with pytest.raises(ValidationError):
            services.task_lists.delete(general["id"], ctx)

    def test_tasks_move_to_general_before_delete(self, services, ctx):
        general = make_list(services, ctx, "General")
        work = make_list(services, ctx, "Work")
        ids = [make_task(services, ctx, f"t{i}", task_list_id=work["id"])["id"] for i in range(3)]

        assert services.task_lists.delete(work["id"], ctx) is True

        assert services.tasks.count({"task_list_id": work["id"]}, ctx) == 0
        for task_id in ids:
            task = services.tasks.find_by_id(task_id, ctx)
            assert task["task_list_id"] == general["id"]
            assert task["task_list"]["name"] == "General"
        assert services.task_lists.find_by_id(work["id"], ctx) is None

    def test_tasks_move_to_remaining_list_without_general(self, services, ctx):
        home = make_list(services, ctx, "Home")
        work = make_list(services, ctx, "Work")
        task = make_task(services, ctx, "t", task_list_id=work["id"])

        services.task_lists.delete(work["id"], ctx)
        assert services.tasks.find_by_id(task["id"], ctx)["task_list_id"] == home["id"]

    def test_delete_by_other_user_is_denied(self, services, ctx, other_ctx):
        make_list(services, ctx, "Home")
        work = make_list(services, ctx, "Work")
        with pytest.raises(AuthorizationError):
            services.task_lists.delete(work["id"], other_ctx)
        assert services.task_lists.exists(work["id"], ctx)

    def test_delete_missing_is_denied(self, services, ctx):
        make_list(services, ctx, "Home")
        with pytest.raises(AuthorizationError) as exc:
            services.task_lists.delete("missing", ctx)
        assert exc.value.message == "Task list not found or access denied"


class TestTaskListCache:
    def test_task_reads_populate_and_writes_evict(self, services, ctx):
        work = make_list(services, ctx, "Work")
        task = make_task(services, ctx, "t", task_list_id=work["id"])
        assert services.cache.is_cached(ctx.user_id)
        assert task["task_list"] == {"id": work["id"], "name": "Work", "color": "#8B5CF6"}

        services.task_lists.update(work["id"], {"name": "Office"}, ctx)
        assert not services.cache.is_cached(ctx.user_id)
        assert services.tasks.find_by_id(task["id"], ctx)["task_list"]["name"] == "Office"

    def test_create_and_delete_evict(self, services, ctx):
        home = make_list(services, ctx, "Home")
        make_task(services, ctx, "t", task_list_id=home["id"])
        assert services.cache.is_cached(ctx.user_id)

        work = make_list(services, ctx, "Work")
        assert not services.cache.is_cached(ctx.user_id)

        make_task(services, ctx, "t2", task_list_id=home["id"])
        services.task_lists.delete(work["id"], ctx)
        assert not services.cache.is_cached(ctx.user_id)

    def test_failed_delete_leaves_data_intact(self, services, ctx):
        work = make_list(services, ctx, "Work")
        with pytest.raises(ValidationError):
            services.task_lists.delete(work["id"], ctx)
        assert [t["name"] for t in services.task_lists.find_all(None, ctx)] == ["Work"]


class TestTaskListExtensions:
    def test_get_default_creates_general_once(self, services, ctx):
        first = services.task_lists.get_default(ctx)
        second = services.task_lists.get_default(ctx)
        assert first["name"] == "General"
        assert first["color"] == "#8B5CF6"
        assert first["id"] == second["id"]
        assert services.task_lists.count(None, ctx) == 1

    def test_get_default_prefers_general(self, services, ctx):
        make_list(services, ctx, "Alpha")
        general = make_list(services, ctx, "General")
        assert services.task_lists.get_default(ctx)["id"] == general["id"]

    def test_get_with_tasks_and_statistics(self, services, ctx):
        work = make_list(services, ctx, "Work")
        home = make_list(services, ctx, "Home")
        make_task(services, ctx, "a", task_list_id=work["id"])
        make_task(services, ctx, "b", task_list_id=work["id"], completed=True)
        make_task(services, ctx, "c", task_list_id=home["id"])

        by_name = {t["name"]: t for t in services.task_lists.get_with_tasks(ctx)}
        assert sorted(t["title"] for t in by_name["Work"]["tasks"]) == ["a", "b"]
        assert [t["title"] for t in by_name["Home"]["tasks"]] == ["c"]

        stats = services.task_lists.get_statistics(ctx)
        assert stats == {
            "total_lists": 2,
            "total_tasks": 3,
            "completed_tasks": 1,
            "pending_tasks": 2,
            "average_tasks_per_list": 1.5,
        }

    def test_reorder_checks_ownership(self, services, ctx, other_ctx):
        a = make_list(services, ctx, "A")
        b = make_list(services, ctx, "B")
        theirs = make_list(services, other_ctx, "C")
        assert [t["id"] for t in services.task_lists.reorder([b["id"], a["id"]], ctx)] == [b["id"], a["id"]]
        with pytest.raises(ValidationError):
            services.task_lists.reorder([a["id"], theirs["id"]], ctx)


class TestServiceLogging:
    def test_operations_log_structured_lines(self, services, ctx, caplog):
        caplog.set_level(logging.INFO)
        make_list(services, ctx, "Work")
        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("[SERVICE]")]
        assert any('"operation": "create"' in line and '"requestId": "req-1"' in line for line in lines)

    def test_failures_are_logged_then_raised(self, services, ctx, caplog):
        caplog.set_level(logging.INFO)
        work = make_list(services, ctx, "Work")
        with pytest.raises(ValidationError):
            services.task_lists.delete(work["id"], ctx)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any('"operation": "delete:error"' in r.getMessage() for r in warnings)
