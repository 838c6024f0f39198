import sqlite3

import pytest

from planner import build_services
from planner.errors import AuthorizationError, ValidationError
from planner.repositories.attachments import format_file_size, get_file_category, is_supported_file_type
from planner.settings import Settings

from .conftest import make_task


def attachment(task_id, name="photo.png", file_type="image/png", size=1024, **extra):
    return {
        "file_name": name,
        "file_url": f"https://files.example.com/{name}",
        "file_type": file_type,
        "file_size": size,
        "task_id": task_id,
        **extra,
    }


class TestFileHelpers:
    def test_format_file_size(self):
        assert format_file_size(0) == "0 Bytes"
        assert format_file_size(512) == "512 Bytes"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(50 * 1024 * 1024) == "50 MB"

    def test_categories(self):
        assert get_file_category("IMAGE/PNG") == "images"
        assert get_file_category("application/pdf") == "documents"
        assert get_file_category("application/x-unknown") is None
        assert is_supported_file_type("video/mp4")
        assert not is_supported_file_type("application/x-msdownload")


class TestAttachmentCreate:
    def test_create_and_enrich(self, services, ctx):
        task = make_task(services, ctx, "T")
        created = services.attachments.create(attachment(task["id"], file_type="Image/PNG"), ctx)
        assert created["file_type"] == "image/png"
        assert created["task"] == {"id": task["id"], "title": "T", "user_id": ctx.user_id}
        assert [a["id"] for a in services.tasks.find_by_id(task["id"], ctx)["attachments"]] == [created["id"]]

    def test_rejects_unsupported_type_and_large_files(self, services, ctx):
        task = make_task(services, ctx, "T")
        with pytest.raises(ValidationError) as exc:
            services.attachments.create(attachment(task["id"], file_type="application/x-msdownload"), ctx)
        assert exc.value.message == "Unsupported file type"
        with pytest.raises(ValidationError) as exc:
            services.attachments.create(attachment(task["id"], size=50 * 1024 * 1024 + 1), ctx)
        assert exc.value.message == "File size exceeds maximum limit of 50 MB"

    def test_task_must_belong_to_caller(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "T")
        with pytest.raises(ValidationError):
            services.attachments.create(attachment(task["id"]), other_ctx)

    def test_per_task_limit(self, tmp_path, ctx):
        services = build_services(Settings(sqlite_db_path=str(tmp_path / "small.db"), max_files_per_task=2))
        task = make_task(services, ctx, "T")
        services.attachments.create(attachment(task["id"], "a.png"), ctx)
        services.attachments.create(attachment(task["id"], "b.png"), ctx)
        with pytest.raises(ValidationError) as exc:
            services.attachments.create(attachment(task["id"], "c.png"), ctx)
        assert exc.value.message == "Maximum 2 attachments per task allowed"

    def test_rejects_empty_files(self, services, ctx):
        task = make_task(services, ctx, "T")
        with pytest.raises(ValidationError):
            services.attachments.create(attachment(task["id"], size=0), ctx)
        created = services.attachments.create(attachment(task["id"], size=1), ctx)
        with pytest.raises(ValidationError):
            services.attachments.update(created["id"], {"file_size": 0}, ctx)


class TestAttachmentListing:
    def test_unlimited_reads_return_every_match(self, tmp_path, ctx):
        services = build_services(Settings(sqlite_db_path=str(tmp_path / "many.db"), max_files_per_task=200))
        task = make_task(services, ctx, "T")
        for i in range(120):
            services.attachments.create(attachment(task["id"], f"f{i:03d}.png"), ctx)

        assert services.attachments.count(None, ctx) == 120
        assert len(services.attachments.find_all(None, ctx)) == 120
        assert len(services.attachments.find_by_task(task["id"], ctx)) == 120
        assert len(services.attachments.find_by_file_type("image/png", ctx)) == 120
        assert len(services.attachments.find_by_category("images", ctx)) == 120

        assert len(services.attachments.find_all({"limit": 5}, ctx)) == 5
        assert len(services.attachments.find_all({"limit": 500}, ctx)) == 100


class TestAttachmentAccess:
    def test_ownership_goes_through_the_task(self, services, ctx, other_ctx):
        task = make_task(services, ctx, "T")
        created = services.attachments.create(attachment(task["id"]), ctx)

        assert services.attachments.find_all(None, other_ctx) == []
        with pytest.raises(AuthorizationError):
            services.attachments.update(created["id"], {"file_name": "x.png"}, other_ctx)
        with pytest.raises(AuthorizationError):
            services.attachments.get_download_url(created["id"], other_ctx)
        assert services.attachments.get_download_url(created["id"], ctx) == created["file_url"]

        renamed = services.attachments.update(created["id"], {"file_name": "renamed.png"}, ctx)
        assert renamed["file_name"] == "renamed.png"
        assert services.attachments.delete(created["id"], ctx) is True

    def test_queries(self, services, ctx):
        task = make_task(services, ctx, "T")
        services.attachments.create(attachment(task["id"], "a.png", size=1000), ctx)
        services.attachments.create(attachment(task["id"], "report.pdf", "application/pdf", 3000), ctx)

        assert [a["file_name"] for a in services.attachments.find_by_category("documents", ctx)] == ["report.pdf"]
        assert [a["file_name"] for a in services.attachments.find_by_file_type("image/png", ctx)] == ["a.png"]
        assert [a["file_name"] for a in services.attachments.find_all({"min_size": 2000}, ctx)] == ["report.pdf"]
        assert [a["file_name"] for a in services.attachments.find_all({"search": "REP"}, ctx)] == ["report.pdf"]
        assert len(services.attachments.find_by_task(task["id"], ctx)) == 2
        with pytest.raises(ValidationError):
            services.attachments.find_by_category("spreadsheets", ctx)

    def test_storage_stats(self, services, ctx):
        task = make_task(services, ctx, "T")
        services.attachments.create(attachment(task["id"], "a.png", size=1000), ctx)
        services.attachments.create(attachment(task["id"], "b.png", size=2000), ctx)
        services.attachments.create(attachment(task["id"], "c.pdf", "application/pdf", 3000), ctx)

        stats = services.attachments.get_storage_stats(ctx)
        assert stats["total_files"] == 3
        assert stats["total_size"] == 6000
        assert stats["average_file_size"] == 2000
        assert stats["files_by_type"] == {
            "application/pdf": {"count": 1, "size": 3000},
            "image/png": {"count": 2, "size": 3000},
        }
        assert [f["file_name"] for f in stats["largest_files"]] == ["c.pdf", "b.png", "a.png"]

    def test_average_size_rounds_half_up(self, services, ctx):
        task = make_task(services, ctx, "T")
        services.attachments.create(attachment(task["id"], "a.png", size=2), ctx)
        services.attachments.create(attachment(task["id"], "b.png", size=3), ctx)
        assert services.attachments.get_storage_stats(ctx)["average_file_size"] == 3

    def test_bulk_delete_is_all_or_nothing(self, services, ctx, other_ctx):
        mine = services.attachments.create(attachment(make_task(services, ctx, "T")["id"]), ctx)
        theirs = services.attachments.create(attachment(make_task(services, other_ctx, "U")["id"]), other_ctx)

        with pytest.raises(AuthorizationError):
            services.attachments.bulk_delete([mine["id"], theirs["id"]], ctx)
        assert services.attachments.exists(mine["id"], ctx)
        assert services.attachments.exists(theirs["id"], other_ctx)

        assert services.attachments.bulk_delete([mine["id"]], ctx) == 1

    def test_cleanup_orphaned(self, services, ctx, settings):
        task = make_task(services, ctx, "T")
        kept = services.attachments.create(attachment(task["id"]), ctx)
        # foreign keys are off on a bare connection, so a dangling row can be planted
        conn = sqlite3.connect(settings.sqlite_db_path)
        conn.execute(
            "INSERT INTO attachments (id, file_name, file_url, file_type, file_size, task_id, created_at) "
            "VALUES ('orphan', 'x.png', 'u', 'image/png', 1, 'gone', '2025-01-01T00:00:00.000000')"
        )
        conn.commit()
        conn.close()

        assert services.attachments.cleanup_orphaned(ctx) == 1
        assert services.attachments.exists(kept["id"], ctx)
