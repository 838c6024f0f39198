import pytest

from planner.errors import ValidationError

from .conftest import make_task


def link(name, value, display=None, icon=None, tag_type="LABEL"):
    return {"type": tag_type, "name": name, "value": value, "display_text": display or value, "icon_name": icon}


def tag_id(services, name, ctx):
    return services.tags.find_or_create({"name": name, "type": "LABEL"}, ctx)["id"]


class TestTagMerge:
    def test_merge_into_tag_already_on_task(self, services, ctx):
        t1 = make_task(services, ctx, "T1", tags=[link("work", "w1"), link("urgent", "u1")])
        urgent, work = tag_id(services, "urgent", ctx), tag_id(services, "work", ctx)

        merged = services.tags.merge(urgent, work, ctx)

        tags = services.tags.get_task_tags(t1["id"], ctx)
        assert [t["name"] for t in tags] == ["work"]
        assert tags[0]["value"] == "w1"
        assert services.tags.find_by_id(urgent, ctx) is None
        assert merged["id"] == work
        assert merged["usage_count"] == 1

    def test_merge_keeps_link_data(self, services, ctx):
        t2 = make_task(services, ctx, "T2", tags=[link("asap", "a2", "ASAP!", "bolt")])
        t3 = make_task(services, ctx, "T3", tags=[link("urgent", "u3")])
        asap, urgent = tag_id(services, "asap", ctx), tag_id(services, "urgent", ctx)

        services.tags.merge([asap], urgent, ctx)

        [moved] = services.tags.get_task_tags(t2["id"], ctx)
        assert moved["tag_id"] == urgent
        assert (moved["value"], moved["display_text"], moved["icon_name"]) == ("a2", "ASAP!", "bolt")
        assert services.tags.get_task_tags(t3["id"], ctx)[0]["tag_id"] == urgent
        assert services.tasks.find_all({"tags": ["asap"]}, ctx) == []
        assert len(services.tasks.find_all({"tags": ["urgent"]}, ctx)) == 2

    def test_merge_several_sources(self, services, ctx):
        make_task(services, ctx, "T", tags=[link("a", "a"), link("b", "b"), link("c", "c")])
        a, b, c = (tag_id(services, n, ctx) for n in "abc")
        merged = services.tags.merge([a, b], c, ctx)
        assert merged["usage_count"] == 1
        assert [t["name"] for t in services.tags.find_all(None, ctx)] == ["c"]

    def test_merge_validation(self, services, ctx):
        work = tag_id(services, "work", ctx)
        with pytest.raises(ValidationError) as exc:
            services.tags.merge(work, work, ctx)
        assert exc.value.message == "Cannot merge tag with itself"
        with pytest.raises(ValidationError):
            services.tags.merge(work, "missing", ctx)
        with pytest.raises(ValidationError):
            services.tags.merge(["missing"], work, ctx)
        with pytest.raises(ValidationError):
            services.tags.merge([], work, ctx)
        assert services.tags.find_by_id(work, ctx) is not None


class TestTagMaintenance:
    def test_find_or_create_normalizes_and_reuses(self, services, ctx):
        first = services.tags.find_or_create({"name": "  Home ", "type": "location", "color": "#123456"}, ctx)
        second = services.tags.find_or_create({"name": "HOME", "type": "LOCATION"}, ctx)
        assert first["name"] == "home"
        assert first["type"] == "LOCATION"
        assert first["id"] == second["id"]

    def test_create_rejects_duplicates_and_bad_type(self, services, ctx):
        services.tags.create({"name": "work", "type": "LABEL"}, ctx)
        with pytest.raises(ValidationError):
            services.tags.create({"name": "Work", "type": "LABEL"}, ctx)
        with pytest.raises(ValidationError) as exc:
            services.tags.create({"name": "x", "type": "COLOR"}, ctx)
        assert exc.value.message == "Invalid tag type"

    def test_cleanup_unused(self, services, ctx):
        make_task(services, ctx, "T", tags=[link("used", "u")])
        orphan = services.tags.create({"name": "orphan", "type": "LABEL"}, ctx)

        result = services.tags.cleanup_unused(ctx)
        assert result == {"deleted_count": 1, "deleted_tag_ids": [orphan["id"]]}
        assert [t["name"] for t in services.tags.find_all(None, ctx)] == ["used"]

    def test_statistics(self, services, ctx):
        make_task(services, ctx, "a", tags=[link("work", "w"), link("bob", "b", tag_type="PERSON")])
        make_task(services, ctx, "b", tags=[link("work", "w")])
        services.tags.create({"name": "idle", "type": "LABEL"}, ctx)

        stats = services.tags.get_statistics(ctx)
        assert stats["total_tags"] == 3
        assert stats["tags_by_type"] == {"LABEL": 2, "PERSON": 1}
        assert stats["most_used_tags"][0]["name"] == "work"
        assert stats["most_used_tags"][0]["usage_count"] == 2

    def test_filters(self, services, ctx, other_ctx):
        done = make_task(services, ctx, "done", tags=[link("archive", "a")], completed=True)
        make_task(services, ctx, "open", tags=[link("work", "w")])
        make_task(services, other_ctx, "theirs", tags=[link("archive", "a")])
        services.tags.create({"name": "idle", "type": "PROJECT"}, ctx)

        assert [t["name"] for t in services.tags.find_all({"unused": True}, ctx)] == ["idle"]
        assert [t["name"] for t in services.tags.find_all({"has_active_tasks": True}, ctx)] == ["work"]
        assert [t["name"] for t in services.tags.find_all({"min_usage_count": 2}, ctx)] == ["archive"]
        assert [t["name"] for t in services.tags.find_by_type("PROJECT", ctx)] == ["idle"]
        assert sorted(t["name"] for t in services.tags.find_by_user(ctx.user_id, ctx)) == ["archive", "work"]
        counted = services.tags.find_all({"with_usage_count": True, "search": "arch"}, ctx)
        assert counted[0]["usage_count"] == 2
        assert done["tags"][0]["name"] == "archive"


class TestTaskTagLinks:
    def test_attach_update_detach(self, services, ctx):
        task = make_task(services, ctx, "T")
        tag = services.tags.create({"name": "person", "type": "PERSON"}, ctx)

        attached = services.tags.attach_to_task(task["id"], tag["id"], {"value": "ann", "display_text": "Ann"}, ctx)
        assert attached["display_text"] == "Ann"

        updated = services.tags.update_task_tag(task["id"], tag["id"], {"display_text": "Ann B."}, ctx)
        assert (updated["value"], updated["display_text"]) == ("ann", "Ann B.")

        assert services.tags.detach_from_task(task["id"], tag["id"], ctx) is True
        assert services.tags.get_task_tags(task["id"], ctx) == []

    def test_links_require_task_ownership(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "T")
        tag = services.tags.create({"name": "x", "type": "LABEL"}, ctx)
        with pytest.raises(ValidationError) as exc:
            services.tags.attach_to_task(task["id"], tag["id"], {"value": "x", "display_text": "x"}, other_ctx)
        assert exc.value.message == "Task not found or access denied"
        with pytest.raises(ValidationError):
            services.tags.get_task_tags(task["id"], other_ctx)

    def test_attach_unknown_tag(self, services, ctx):
        task = make_task(services, ctx, "T")
        with pytest.raises(ValidationError):
            services.tags.attach_to_task(task["id"], "missing", {"value": "x", "display_text": "x"}, ctx)
