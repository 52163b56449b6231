from datetime import UTC, datetime, timedelta

from conftest import NOW


def test_exists_tracks_structured_artifact_only(cache, seed):
    cache.ensure_dirs()
    cache.raw_path("2024030100").write_bytes(b"GRIB")
    assert not cache.exists("2024030100")
    seed("2024030100")
    assert cache.exists("2024030100")


def test_directories_are_created_lazily(cache):
    assert not cache.raw_dir.exists()
    assert cache.entries() == []
    assert cache.reconcile_orphans() == []
    cache.ensure_dirs()
    assert cache.raw_dir.is_dir() and cache.json_dir.is_dir()


def test_entries_skip_foreign_files(cache, seed):
    seed("2024030106")
    (cache.json_dir / "notes.json").write_text("{}")
    entries = cache.entries()
    assert [e.key for e in entries] == ["2024030106"]
    assert entries[0].valid_time == datetime(2024, 3, 1, 6, tzinfo=UTC)


def test_reconcile_removes_orphans_and_is_idempotent(cache, seed):
    seed("2024030100")
    seed("2024030106")
    cache.raw_path("2024022918").write_bytes(b"GRIB")  # conversion crashed
    cache.raw_path("2024030106").write_bytes(b"GRIB")  # converted, raw kept
    cache.partial_path(cache.raw_path("2024022912")).write_bytes(b"GR")
    cache.partial_path(cache.structured_path("2024022906")).write_text("[{")

    removed = cache.reconcile_orphans()

    assert {p.name.split(".")[0] for p in removed} == {"2024022918", "2024022912", "2024022906"}
    assert sorted(p.name for p in cache.json_dir.iterdir()) == ["2024030100.json", "2024030106.json"]
    assert [p.name for p in cache.raw_dir.iterdir()] == ["2024030106.f000"]
    assert cache.reconcile_orphans() == []


def test_reconcile_keeps_pending_conversions(cache):
    cache.ensure_dirs()
    raw = cache.raw_path("2024030106")
    raw.write_bytes(b"GRIB")
    partial = cache.partial_path(cache.structured_path("2024030106"))
    partial.write_text("[")

    assert cache.reconcile_orphans(pending={"2024030106"}) == []
    assert raw.exists() and partial.exists()


def test_check_freshness_reports_only_stale_keys(cache, seed):
    seed("2024030100", age=timedelta(hours=30))
    seed("2024030106", age=timedelta(hours=2))
    seen = []

    stale = cache.check_freshness(24, on_stale=seen.append)

    assert [e.key for e in stale] == ["2024030100"]
    assert [e.key for e in seen] == ["2024030100"]
    assert stale[0].age(NOW) >= timedelta(hours=30)


def test_check_freshness_honours_threshold(cache, seed):
    seed("2024030100", age=timedelta(hours=30))
    assert cache.check_freshness(48) == []


def test_purge_removes_both_artifacts(cache, seed):
    seed("2024030100")
    cache.raw_path("2024030100").write_bytes(b"GRIB")
    cache.purge("2024030100")
    assert not cache.exists("2024030100")
    assert not cache.raw_path("2024030100").exists()


def test_reconcile_keeps_raw_that_has_structured_counterpart(cache, seed):
    seed("2024030100")
    raw = cache.raw_path("2024030100")
    raw.write_bytes(b"GRIB")

    assert cache.reconcile_orphans() == []
    assert raw.exists()
