import json
from datetime import datetime, timezone

import pytest

from certwatch.blobstore import BlobNotFoundError, LocalBlobStore
from certwatch.errors import StorePersistError
from certwatch.models import LogSource, Watermark
from certwatch.state import LOG_STATE_KEY, WatermarkStore, merge_watermarks, watermark_for

URL = "https://ct.example.net/logs/argon/"
WHEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_put_then_get(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        await store.put("certs/a.json", b"{}")
        assert await store.get("certs/a.json") == b"{}"
        assert (tmp_path / "certs" / "a.json").read_bytes() == b"{}"

    @pytest.mark.asyncio
    async def test_missing_key(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        with pytest.raises(BlobNotFoundError):
            await store.get("nope.json")

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, tmp_path):
        store = LocalBlobStore(str(tmp_path))
        await store.put("log-state.json", b"1")
        await store.put("log-state.json", b"2")
        assert await store.get("log-state.json") == b"2"
        assert [p.name for p in tmp_path.iterdir()] == ["log-state.json"]

    @pytest.mark.asyncio
    async def test_key_cannot_escape_root(self, tmp_path):
        store = LocalBlobStore(str(tmp_path / "bucket"))
        with pytest.raises(ValueError):
            await store.put("../outside.json", b"x")


class TestWatermark:
    def test_round_trip_dict(self):
        wm = Watermark(URL, "Op", "Argon", last_fetched=99, last_fetched_time=WHEN)
        assert Watermark.from_dict(URL, wm.to_dict()) == wm

    def test_legacy_int_state(self):
        wm = Watermark.from_dict(URL, 1234)
        assert wm.last_fetched == 1234
        assert wm.url == URL

    def test_naive_time_is_utc(self):
        wm = Watermark.from_dict(URL, {"last_fetched": 1, "last_fetched_time": "2024-05-01T12:00:00"})
        assert wm.last_fetched_time == WHEN

    def test_negative_size_rejected(self):
        with pytest.raises(ValueError):
            Watermark.from_dict(URL, {"last_fetched": -1})

    def test_empty_log_is_initialized(self):
        wm = Watermark.from_dict(URL, Watermark(URL, last_fetched=0).to_dict())
        assert wm.last_fetched == 0
        assert wm.initialized

    def test_never_synced_round_trips_as_null(self):
        data = Watermark(URL).to_dict()
        assert data["last_fetched"] is None
        assert not Watermark.from_dict(URL, data).initialized


class TestWatermarkStore:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        store = WatermarkStore(LocalBlobStore(str(tmp_path)))
        assert await store.load() == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b'{"x": {"last_fetched": "abc"}}'])
    async def test_corrupt_file_is_empty(self, tmp_path, body):
        (tmp_path / LOG_STATE_KEY).write_bytes(body)
        store = WatermarkStore(LocalBlobStore(str(tmp_path)))
        assert await store.load() == {}

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        store = WatermarkStore(LocalBlobStore(str(tmp_path)))
        wm = Watermark(URL, "Op", "Argon", last_fetched=42, last_fetched_time=WHEN)

        await store.save({URL: wm})

        on_disk = json.loads((tmp_path / LOG_STATE_KEY).read_text())
        assert on_disk[URL]["last_fetched"] == 42
        assert on_disk[URL]["url"] == URL
        assert await store.load() == {URL: wm}

    @pytest.mark.asyncio
    async def test_save_failure_is_fatal(self):
        class BrokenStore:
            async def get(self, key):
                raise BlobNotFoundError(key)

            async def put(self, key, data):
                raise PermissionError("read-only bucket")

        with pytest.raises(StorePersistError, match="read-only bucket"):
            await WatermarkStore(BrokenStore()).save({})


class TestMerge:
    def test_fresh_watermark_for_unknown_log(self):
        source = LogSource(URL, "Op", "Argon")
        wm = watermark_for(source, {})
        assert wm.last_fetched is None
        assert not wm.initialized
        assert wm.operator == "Op"

    def test_existing_watermark_reused(self):
        existing = Watermark(URL, last_fetched=5)
        assert watermark_for(LogSource(URL, "Op", "Argon"), {URL: existing}) is existing

    def test_merge_keeps_other_logs(self):
        other = Watermark("https://other/", last_fetched=3)
        merged = merge_watermarks({"https://other/": other}, [Watermark(URL, last_fetched=7)])
        assert merged["https://other/"] is other
        assert merged[URL].last_fetched == 7

    def test_merge_never_regresses(self):
        merged = merge_watermarks(
            {URL: Watermark(URL, last_fetched=10)}, [Watermark(URL, last_fetched=4)]
        )
        assert merged[URL].last_fetched == 10

    def test_merge_ignores_uninitialized_update(self):
        merged = merge_watermarks({URL: Watermark(URL, last_fetched=10)}, [Watermark(URL)])
        assert merged[URL].last_fetched == 10
