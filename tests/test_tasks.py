from datetime import datetime, timedelta, timezone

import pytest

from planner.errors import AuthorizationError, ValidationError

from .conftest import make_list, make_task


def label(name, value=None, **extra):
    return {"type": "LABEL", "name": name, "value": value or name, "display_text": f"#{name}", **extra}


class TestTaskCreate:
    def test_defaults_to_general_list(self, services, ctx):
        task = make_task(services, ctx, "Buy milk")
        assert task["task_list"]["name"] == "General"
        assert task["priority"] == "MEDIUM"
        assert task["status"] == "NOT_STARTED"
        assert task["completed"] is False
        assert task["completed_at"] is None
        assert task["tags"] == []
        assert task["attachments"] == []

    def test_title_is_required(self, services, ctx):
        with pytest.raises(ValidationError) as exc:
            make_task(services, ctx, "   ")
        assert exc.value.message == "Task title is required"

    def test_list_must_belong_to_caller(self, services, ctx, other_ctx):
        theirs = make_list(services, other_ctx, "Theirs")
        with pytest.raises(ValidationError) as exc:
            make_task(services, ctx, "t", task_list_id=theirs["id"])
        assert exc.value.message == "Task list not found or access denied"

    def test_inline_tags_are_found_or_created(self, services, ctx):
        first = make_task(services, ctx, "a", tags=[label("Work", icon_name="briefcase")])
        second = make_task(services, ctx, "b", tags=[{**label("work", "w2"), "type": "label"}])

        assert [t["name"] for t in first["tags"]] == ["work"]
        assert first["tags"][0]["icon_name"] == "briefcase"
        assert first["tags"][0]["tag_id"] == second["tags"][0]["tag_id"]
        assert second["tags"][0]["value"] == "w2"
        assert len(services.tags.find_all(None, ctx)) == 1

    def test_completed_on_create_stamps_completion(self, services, ctx):
        task = make_task(services, ctx, "done", completed=True)
        assert task["status"] == "DONE"
        assert task["completed_at"] is not None


class TestTaskCompletion:
    def test_overdue_then_toggle(self, services, ctx):
        task = make_task(services, ctx, "late", scheduled_date="2020-01-01")
        assert task["id"] in [t["id"] for t in services.tasks.find_overdue(ctx)]

        done = services.tasks.toggle_completion(task["id"], ctx)
        assert done["completed"] is True
        assert done["completed_at"] is not None
        assert done["status"] == "DONE"
        assert task["id"] not in [t["id"] for t in services.tasks.find_overdue(ctx)]

        reopened = services.tasks.toggle_completion(task["id"], ctx)
        assert reopened["completed"] is False
        assert reopened["completed_at"] is None
        assert reopened["status"] == "NOT_STARTED"

    def test_future_and_unscheduled_tasks_are_not_overdue(self, services, ctx):
        future = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()
        make_task(services, ctx, "later", scheduled_date=future)
        make_task(services, ctx, "whenever")
        assert services.tasks.find_overdue(ctx) == []
        assert services.tasks.count({"overdue": False}, ctx) == 2

    def test_status_and_completed_stay_in_sync(self, services, ctx):
        task = make_task(services, ctx, "t")

        done = services.tasks.update(task["id"], {"status": "DONE"}, ctx)
        assert done["completed"] is True and done["completed_at"] is not None

        progress = services.tasks.update(task["id"], {"status": "IN_PROGRESS"}, ctx)
        assert progress["completed"] is False and progress["completed_at"] is None

        again = services.tasks.update(task["id"], {"completed": True}, ctx)
        assert again["status"] == "DONE"

        undone = services.tasks.update(task["id"], {"completed": False}, ctx)
        assert undone["status"] == "NOT_STARTED"

    def test_conflicting_status_and_flag_is_rejected(self, services, ctx):
        task = make_task(services, ctx, "t")
        with pytest.raises(ValidationError):
            services.tasks.update(task["id"], {"status": "DONE", "completed": False}, ctx)

    def test_toggle_by_other_user_is_denied(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "t")
        with pytest.raises(AuthorizationError):
            services.tasks.toggle_completion(task["id"], other_ctx)


class TestTaskUpdate:
    def test_partial_update_and_clearing(self, services, ctx):
        task = make_task(services, ctx, "t", scheduled_date="2030-05-01", clean_title="t")
        updated = services.tasks.update(task["id"], {"priority": "HIGH", "scheduled_date": None}, ctx)
        assert updated["priority"] == "HIGH"
        assert updated["scheduled_date"] is None
        assert updated["clean_title"] == "t"
        assert updated["title"] == "t"

    def test_move_to_foreign_list_is_rejected(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "t")
        theirs = make_list(services, other_ctx, "Theirs")
        with pytest.raises(ValidationError):
            services.tasks.update(task["id"], {"task_list_id": theirs["id"]}, ctx)

    def test_other_user_cannot_update_or_delete(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "mine")
        with pytest.raises(AuthorizationError):
            services.tasks.update(task["id"], {"title": "x"}, other_ctx)
        with pytest.raises(AuthorizationError):
            services.tasks.delete(task["id"], other_ctx)
        assert services.tasks.find_by_id(task["id"], ctx)["title"] == "mine"

    def test_find_by_id_does_not_filter_by_owner(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "mine")
        assert services.tasks.find_by_id(task["id"], other_ctx)["id"] == task["id"]
        assert services.tasks.exists(task["id"], other_ctx) is False


class TestTaskQueries:
    def test_filters_search_and_tags(self, services, ctx, other_ctx):
        make_task(services, ctx, "Write report", priority="HIGH", tags=[label("work")])
        make_task(services, ctx, "Water plants", priority="LOW", tags=[label("home")])
        make_task(services, ctx, "100% done_ish")
        make_task(services, other_ctx, "Write report too", tags=[label("work")])

        assert [t["title"] for t in services.tasks.search("write", ctx)] == ["Write report"]
        assert [t["title"] for t in services.tasks.find_all({"tags": ["WORK"]}, ctx)] == ["Write report"]
        assert [t["title"] for t in services.tasks.find_all({"priority": "LOW"}, ctx)] == ["Water plants"]
        assert [t["title"] for t in services.tasks.find_all({"search": "100%"}, ctx)] == ["100% done_ish"]
        assert services.tasks.find_all({"search": "_"}, ctx)[0]["title"] == "100% done_ish"

    def test_empty_search_is_rejected(self, services, ctx):
        with pytest.raises(ValidationError):
            services.tasks.search("  ", ctx)

    def test_sort_by_priority(self, services, ctx):
        make_task(services, ctx, "low", priority="LOW")
        make_task(services, ctx, "high", priority="HIGH")
        make_task(services, ctx, "medium")
        titles = [t["title"] for t in services.tasks.find_all({"sort_by": "priority", "sort_order": "desc"}, ctx)]
        assert titles == ["high", "medium", "low"]

    def test_find_by_scheduled_date(self, services, ctx):
        make_task(services, ctx, "morning", scheduled_date="2025-02-01T08:00:00Z")
        make_task(services, ctx, "night", scheduled_date="2025-02-01T23:30:00Z")
        make_task(services, ctx, "next day", scheduled_date="2025-02-02T00:00:00Z")
        titles = [t["title"] for t in services.tasks.find_by_scheduled_date("2025-02-01", ctx)]
        assert titles == ["morning", "night"]

    def test_find_by_scheduled_date_rejects_malformed_dates(self, services, ctx):
        with pytest.raises(ValidationError):
            services.tasks.find_by_scheduled_date("not-a-date", ctx)

    def test_blank_tag_filter_matches_nothing(self, services, ctx):
        make_task(services, ctx, "tagged", tags=[label("work")])
        make_task(services, ctx, "plain")
        assert services.tasks.find_all({"tags": ["  "]}, ctx) == []
        assert services.tasks.find_all({"tags": []}, ctx) == []
        assert len(services.tasks.find_all({"tags": None}, ctx)) == 2

    def test_find_paginated(self, services, ctx):
        for i in range(5):
            make_task(services, ctx, f"t{i}")
        page = services.tasks.find_paginated({"sort_by": "title", "sort_order": "asc"}, page=2, limit=2, ctx=ctx)
        assert page["total"] == 5
        assert page["total_pages"] == 3
        assert page["page"] == 2
        assert [t["title"] for t in page["items"]] == ["t2", "t3"]

    def test_get_stats(self, services, ctx):
        make_task(services, ctx, "late", scheduled_date="2020-01-01")
        make_task(services, ctx, "open")
        done = make_task(services, ctx, "done")
        services.tasks.toggle_completion(done["id"], ctx)

        stats = services.tasks.get_stats(ctx)
        assert stats["total"] == 3
        assert stats["completed"] == 1
        assert stats["pending"] == 2
        assert stats["overdue"] == 1
        assert stats["completed_today"] == 1
        assert stats["completed_this_week"] == 1
        assert stats["completed_this_month"] == 1


class TestBulkOperations:
    def test_bulk_update_applies_to_every_task(self, services, ctx):
        ids = [make_task(services, ctx, f"t{i}")["id"] for i in range(3)]
        updated = services.tasks.bulk_update(ids, {"completed": True, "priority": "HIGH"}, ctx)
        assert [t["id"] for t in updated] == ids
        for task in updated:
            assert task["completed"] is True
            assert task["status"] == "DONE"
            assert task["completed_at"] is not None
            assert task["priority"] == "HIGH"

    def test_bulk_update_reopens_done_tasks(self, services, ctx):
        ids = [make_task(services, ctx, f"t{i}", completed=True)["id"] for i in range(2)]
        for task in services.tasks.bulk_update(ids, {"completed": False}, ctx):
            assert task["status"] == "NOT_STARTED"
            assert task["completed_at"] is None

    def test_bulk_update_is_all_or_nothing(self, services, ctx, other_ctx):
        mine = [make_task(services, ctx, f"mine{i}") for i in range(2)]
        theirs = make_task(services, other_ctx, "theirs")

        with pytest.raises(AuthorizationError) as exc:
            services.tasks.bulk_update([mine[0]["id"], theirs["id"], mine[1]["id"]], {"title": "hijacked"}, ctx)
        assert exc.value.message == "Some tasks not found or access denied"

        for original in [*mine, theirs]:
            reread = services.tasks.find_by_id(original["id"])
            assert reread["title"] == original["title"]
            assert reread["updated_at"] == original["updated_at"]

    def test_bulk_delete_is_all_or_nothing(self, services, ctx, other_ctx):
        mine = make_task(services, ctx, "mine")
        with pytest.raises(AuthorizationError):
            services.tasks.bulk_delete([mine["id"], "missing"], ctx)
        assert services.tasks.exists(mine["id"], ctx)

        assert services.tasks.bulk_delete([mine["id"], mine["id"]], ctx) == 1
        assert not services.tasks.exists(mine["id"], ctx)

    def test_bulk_limits(self, services, ctx):
        with pytest.raises(ValidationError):
            services.tasks.bulk_update([], {"completed": True}, ctx)
        with pytest.raises(ValidationError) as exc:
            services.tasks.bulk_delete([f"id-{i}" for i in range(101)], ctx)
        assert exc.value.message == "Cannot process more than 100 tasks at once"

    def test_bulk_delete_removes_links_and_attachments(self, services, ctx):
        task = make_task(services, ctx, "t", tags=[label("work")])
        services.attachments.create(
            {"file_name": "a.png", "file_url": "https://x/a.png", "file_type": "image/png", "file_size": 10,
             "task_id": task["id"]},
            ctx,
        )
        services.tasks.bulk_delete([task["id"]], ctx)
        assert services.attachments.find_all(None, ctx) == []
        assert services.tags.find_all({"unused": True}, ctx)[0]["name"] == "work"
