import pytest

from planner.errors import AuthorizationError, ValidationError

from .conftest import make_calendar, make_event


class TestCalendarDefaults:
    def test_first_calendar_becomes_default(self, services, ctx):
        first = make_calendar(services, ctx, "Personal")
        second = make_calendar(services, ctx, "Work")
        assert first["is_default"] is True
        assert second["is_default"] is False

    def test_new_default_clears_previous(self, services, ctx):
        first = make_calendar(services, ctx, "Personal")
        second = make_calendar(services, ctx, "Work", is_default=True)
        assert second["is_default"] is True
        assert services.calendars.find_by_id(first["id"], ctx)["is_default"] is False

        services.calendars.set_default(first["id"], ctx)
        defaults = services.calendars.find_all({"is_default": True}, ctx)
        assert [c["id"] for c in defaults] == [first["id"]]

    def test_unsetting_the_default_is_rejected(self, services, ctx):
        first = make_calendar(services, ctx)
        with pytest.raises(ValidationError):
            services.calendars.update(first["id"], {"is_default": False}, ctx)

    def test_get_default_creates_calendar(self, services, ctx):
        default = services.calendars.get_default(ctx)
        assert default["name"] == "My Calendar"
        assert default["is_default"] is True
        assert services.calendars.get_default(ctx)["id"] == default["id"]


class TestCalendarDelete:
    def test_deleting_the_only_calendar_fails(self, services, ctx):
        only = make_calendar(services, ctx)
        with pytest.raises(ValidationError) as exc:
            services.calendars.delete(only["id"], ctx)
        assert exc.value.message == "Cannot delete the only calendar"

    def test_deleting_the_default_promotes_another(self, services, ctx):
        work = make_calendar(services, ctx, "Work")
        home = make_calendar(services, ctx, "Home")
        make_event(services, ctx, work["id"], "2025-03-03T10:00:00Z", "2025-03-03T11:00:00Z")

        assert services.calendars.delete(work["id"], ctx) is True
        assert services.calendars.find_by_id(home["id"], ctx)["is_default"] is True
        assert services.events.count(None, ctx) == 0

    def test_other_user_cannot_delete(self, services, ctx, other_ctx):
        make_calendar(services, ctx, "Work")
        home = make_calendar(services, ctx, "Home")
        with pytest.raises(AuthorizationError):
            services.calendars.delete(home["id"], other_ctx)


class TestCalendarExtensions:
    def test_visibility(self, services, ctx):
        cal = make_calendar(services, ctx, "Work")
        make_calendar(services, ctx, "Home")
        hidden = services.calendars.toggle_visibility(cal["id"], ctx)
        assert hidden["is_visible"] is False
        assert [c["name"] for c in services.calendars.get_visible(ctx)] == ["Home"]

    def test_event_counts(self, services, ctx):
        work = make_calendar(services, ctx, "Work")
        make_calendar(services, ctx, "Home")
        make_event(services, ctx, work["id"], "2025-03-03T10:00:00Z", "2025-03-03T11:00:00Z")
        make_event(services, ctx, work["id"], "2025-03-04T10:00:00Z", "2025-03-04T11:00:00Z")
        counts = {c["name"]: c["event_count"] for c in services.calendars.get_with_event_counts(ctx)}
        assert counts == {"Work": 2, "Home": 0}

    def test_name_is_unique_per_user(self, services, ctx):
        make_calendar(services, ctx, "Work")
        with pytest.raises(ValidationError):
            make_calendar(services, ctx, "WORK")
