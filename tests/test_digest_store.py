"""Tests for digest file storage."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from mail_digest.core.exceptions import DigestError
from mail_digest.core.models import MailboxDigest
from mail_digest.storage.atomic import atomic_write_text, safe_name
from mail_digest.storage.digest_store import DIGEST_SUFFIX, DigestStore
from tests.helpers import make_digest

T0 = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> DigestStore:
    return DigestStore(tmp_path / "digests")


class TestNaming:
    """File naming convention."""

    def test_path_for(self, store: DigestStore) -> None:
        digest = make_digest([1], timestamp=T0)
        assert store.path_for(digest).name == (
            "20240115T103000000000Z_me@example.com_INBOX.digest.json"
        )

    def test_timestamp_is_normalized_to_utc(self, store: DigestStore) -> None:
        local = T0.astimezone(timezone(timedelta(hours=2)))
        digest = make_digest([1], timestamp=local)
        assert store.path_for(digest).name.startswith("20240115T103000000000Z_")

    def test_folder_separators_are_encoded(self, store: DigestStore) -> None:
        digest = make_digest([1], folder="[Gmail]/All Mail", timestamp=T0)
        assert store.path_for(digest).name.endswith(
            "_%5BGmail%5D%2FAll%20Mail.digest.json"
        )

    @pytest.mark.parametrize(
        ("first", "second"),
        [("Archive/2020", "Archive-2020"), ("a b", "a_b"), ("a_b", "a-b"), ("x%2Fy", "x/y")],
    )
    def test_distinct_folders_get_distinct_suffixes(self, first: str, second: str) -> None:
        assert DigestStore.suffix_for("me@example.com", first) != DigestStore.suffix_for(
            "me@example.com", second
        )

    def test_underscore_in_address_cannot_shift_fields(self) -> None:
        assert DigestStore.suffix_for("a_b@x.org", "c") != DigestStore.suffix_for("a", "b@x.org_c")


class TestSaveAndLoad:
    """Saving, loading and rewriting digests."""

    def test_round_trip(self, store: DigestStore, sample_digest: MailboxDigest) -> None:
        path = store.save(sample_digest)
        assert path.exists()
        assert store.load(path) == sample_digest

    def test_file_is_json_with_format_tag(self, store: DigestStore) -> None:
        path = store.save(make_digest([1, 2], timestamp=T0))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["format"] == "mail-digest/1"
        assert data["index_range"] == [1, 2]
        assert [h["id"] for h in data["headers"]] == [1, 2]

    def test_save_refuses_overwrite(self, store: DigestStore) -> None:
        digest = make_digest([1], timestamp=T0)
        store.save(digest)
        with pytest.raises(DigestError, match="Refusing to overwrite"):
            store.save(digest)

    def test_rewrite_replaces_content(self, store: DigestStore) -> None:
        digest = make_digest([1, 2], timestamp=T0)
        path = store.save(digest)

        store.rewrite(path, digest.with_flag_update([2], "add", ["\\Flagged"]))

        assert store.load(path).get(2).flags == ("\\Flagged",)
        assert store.list_digests() == [path]

    def test_rewrite_requires_existing_file(self, store: DigestStore, tmp_path: Path) -> None:
        with pytest.raises(DigestError, match="not found"):
            store.rewrite(tmp_path / "missing.digest.json", make_digest([1]))

    def test_load_missing_file(self, store: DigestStore, tmp_path: Path) -> None:
        with pytest.raises(DigestError):
            store.load(tmp_path / "missing.digest.json")

    def test_load_corrupt_file(self, store: DigestStore, tmp_path: Path) -> None:
        path = tmp_path / "broken.digest.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(DigestError, match="Failed to load"):
            store.load(path)

    def test_load_wrong_format(self, store: DigestStore, tmp_path: Path) -> None:
        path = tmp_path / "other.digest.json"
        path.write_text(json.dumps({"format": "other"}), encoding="utf-8")
        with pytest.raises(DigestError):
            store.load(path)

    def test_no_temp_files_left_behind(self, store: DigestStore) -> None:
        store.save(make_digest([1], timestamp=T0))
        leftovers = [p for p in store.digest_dir.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []


class TestLatest:
    """Locating the newest snapshot for an (address, folder) pair."""

    def test_missing_directory(self, store: DigestStore) -> None:
        assert store.list_digests() == []
        assert store.find_latest("me@example.com", "INBOX") is None
        assert store.load_latest("me@example.com", "INBOX") is None

    def test_latest_is_newest_timestamp(self, store: DigestStore) -> None:
        store.save(make_digest([1], timestamp=T0))
        newest = store.save(make_digest([1, 2], timestamp=T0 + timedelta(hours=1)))
        store.save(make_digest([1], timestamp=T0 + timedelta(minutes=5)))

        assert store.find_latest("me@example.com", "INBOX") == newest
        path, digest = store.load_latest("me@example.com", "INBOX")
        assert path == newest
        assert len(digest) == 2

    def test_ignores_other_folders_and_accounts(self, store: DigestStore) -> None:
        own = store.save(make_digest([1], timestamp=T0))
        store.save(make_digest([1], folder="Sent", timestamp=T0 + timedelta(hours=1)))
        store.save(
            make_digest([1], address="you@example.com", timestamp=T0 + timedelta(hours=2))
        )

        assert store.find_latest("me@example.com", "INBOX") == own

    def test_folder_with_address_like_suffix_does_not_collide(self, store: DigestStore) -> None:
        inbox = store.save(make_digest([1], timestamp=T0))
        store.save(
            make_digest([1], folder="Archive_INBOX", timestamp=T0 + timedelta(hours=1))
        )
        assert store.find_latest("me@example.com", "INBOX") == inbox

    def test_similar_folder_names_keep_separate_latest(self, store: DigestStore) -> None:
        slash = store.save(make_digest([1, 2, 3], folder="Archive/2020", timestamp=T0))
        dash = store.save(
            make_digest([7, 8], folder="Archive-2020", timestamp=T0 + timedelta(hours=1))
        )

        assert store.find_latest("me@example.com", "Archive/2020") == slash
        assert store.find_latest("me@example.com", "Archive-2020") == dash
        _, digest = store.load_latest("me@example.com", "Archive/2020")
        assert digest.folder_name == "Archive/2020"
        assert digest.ids == frozenset({1, 2, 3})

    def test_misnamed_file_is_skipped(
        self, store: DigestStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        own = store.save(make_digest([1], timestamp=T0))
        foreign = make_digest([9], folder="Sent", timestamp=T0 + timedelta(hours=1))
        misnamed = store.digest_dir / (
            "20240115T113000000000Z" + DigestStore.suffix_for("me@example.com", "INBOX")
        )
        atomic_write_text(misnamed, json.dumps(foreign.to_dict()))

        assert store.find_latest("me@example.com", "INBOX") == own
        assert "Skipping digest" in caplog.text

    def test_list_by_address(self, store: DigestStore) -> None:
        store.save(make_digest([1], timestamp=T0))
        store.save(make_digest([1], folder="Sent", timestamp=T0))
        store.save(make_digest([1], address="you@example.com", timestamp=T0))

        names = [p.name for p in store.list_digests("me@example.com")]

        assert len(names) == 2
        assert all(n.endswith(DIGEST_SUFFIX) for n in names)

    def test_ignores_unrelated_files(self, store: DigestStore) -> None:
        store.save(make_digest([1], timestamp=T0))
        (store.digest_dir / "notes.txt").write_text("x", encoding="utf-8")
        assert len(store.list_digests()) == 1


class TestAtomicHelpers:
    def test_safe_name(self) -> None:
        assert safe_name("me+tag@example.com") == "me+tag@example.com"
        assert safe_name("a_b/c d") == "a%5Fb%2Fc%20d"
        assert safe_name("50%") == "50%25"

    def test_atomic_write_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "file.json"
        atomic_write_text(target, "{}")
        assert target.read_text(encoding="utf-8") == "{}"

    def test_atomic_write_failure_keeps_original(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "file.json"
        target.write_text("original", encoding="utf-8")

        def fail_replace(src: str, dst: Path) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("mail_digest.storage.atomic.os.replace", fail_replace)
        with pytest.raises(OSError, match="disk full"):
            atomic_write_text(target, "new")

        assert target.read_text(encoding="utf-8") == "original"
        assert [p.name for p in tmp_path.iterdir()] == ["file.json"]
