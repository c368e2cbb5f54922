import json

import pytest

from depfeed.domain.errors import FeedParseError
from depfeed.domain.models import RepositoryConfig
from depfeed.storage.json_db_manager import JsonDatabaseManager, check_feed_id


@pytest.fixture
def db(tmp_path) -> JsonDatabaseManager:
    manager = JsonDatabaseManager(tmp_path)
    manager.initialize()
    return manager


def test_initialize_writes_default_config(tmp_path, db):
    raw = json.loads((tmp_path / "repository.json").read_text(encoding="utf-8"))
    assert raw["supported_format_version"] == "0.3.0"
    assert raw["refresh_interval_seconds"] == 3600


def test_existing_config_is_merged_with_defaults(tmp_path):
    (tmp_path / "repository.json").write_text(json.dumps({"fetch_retries": 7}), encoding="utf-8")
    manager = JsonDatabaseManager(tmp_path)
    manager.initialize()
    config = manager.get_repository_config()
    assert config.fetch_retries == 7
    assert config.max_template_depth == 8
    assert "max_template_depth" in json.loads((tmp_path / "repository.json").read_text(encoding="utf-8"))


def test_broken_config_falls_back_to_defaults(tmp_path):
    (tmp_path / "repository.json").write_text("{oops", encoding="utf-8")
    manager = JsonDatabaseManager(tmp_path)
    manager.initialize()
    assert manager.get_repository_config().fetch_retries == 3


def test_save_repository_config(tmp_path, db):
    db.save_repository_config(RepositoryConfig(display_name="Mirror"))
    reloaded = JsonDatabaseManager(tmp_path)
    reloaded.initialize()
    assert reloaded.get_repository_config().display_name == "Mirror"


def test_save_feed_stores_exact_bytes(tmp_path, db, feed_bytes):
    odd_but_valid = feed_bytes.replace(b"\n", b"\r\n")
    db.save_feed("arch", odd_but_valid)
    assert (tmp_path / "feeds" / "arch.json").read_bytes() == odd_but_valid
    assert db.get_feed("arch").raw == odd_but_valid
    assert not (tmp_path / "feeds" / "arch.json.tmp").exists()


def test_broken_feed_does_not_replace_stored_one(tmp_path, db, feed_bytes):
    db.save_feed("arch", feed_bytes)
    with pytest.raises(FeedParseError):
        db.save_feed("arch", b'{"name": "x", "name": "y"}')
    assert (tmp_path / "feeds" / "arch.json").read_bytes() == feed_bytes
    assert db.get_feed("arch").raw == feed_bytes


@pytest.mark.parametrize("feed_id", ["", "..", "a/b", "with space", "x\\y"])
def test_invalid_feed_ids(db, feed_bytes, feed_id):
    with pytest.raises(ValueError):
        db.save_feed(feed_id, feed_bytes)


def test_check_feed_id():
    assert check_feed_id("arch1t3cht.Aegisub-Scripts_2") == "arch1t3cht.Aegisub-Scripts_2"


def test_delete_feed(tmp_path, db, feed_bytes):
    db.save_feed("arch", feed_bytes)
    db.delete_feed("arch")
    assert db.get_feed("arch") is None
    assert not (tmp_path / "feeds" / "arch.json").exists()
    with pytest.raises(ValueError):
        db.delete_feed("arch")


def test_rebuild_index_picks_up_disk_changes_and_skips_broken(tmp_path, db, feed_bytes):
    feeds_dir = tmp_path / "feeds"
    (feeds_dir / "arch.json").write_bytes(feed_bytes)
    (feeds_dir / "broken.json").write_text("not json", encoding="utf-8")
    (feeds_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    db.rebuild_index()

    assert [doc.feed_id for doc in db.get_all_feeds()] == ["arch"]
    assert db.last_built_at is not None
