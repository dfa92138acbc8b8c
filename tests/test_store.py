"""Tests for the on-disk report store."""

import asyncio
import os
from datetime import datetime, timezone

import pytest

from wells.errors import LocationUnavailableError, StoreFailedError
from wells.store import (
    FilenameIdentifierLocationProvider,
    IdentifierExtensionLocationProvider,
    ReportLocationProvider,
    ReportStore,
)


class NoLocationProvider(ReportLocationProvider):
    def report_path(self, identifier):
        return None

    def identifier_for(self, path):
        return None


def test_persist_creates_root_and_writes_payload(tmp_path):
    root = tmp_path / "nested" / "reports"
    store = ReportStore(root)

    path = store.persist("ABC", b"crash log")

    assert path == root / "ABC.wellsdata"
    assert path.read_bytes() == b"crash log"
    assert store.exists(path)
    # no temporary leftovers
    assert [p.name for p in root.iterdir()] == ["ABC.wellsdata"]


def test_persist_without_location_raises(tmp_path):
    store = ReportStore(tmp_path, NoLocationProvider())
    with pytest.raises(LocationUnavailableError) as excinfo:
        store.persist("ABC", b"x")
    assert excinfo.value.code == "location_unavailable"


def test_persist_failure_leaves_no_partial_file(tmp_path, monkeypatch):
    store = ReportStore(tmp_path)

    def broken_replace(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", broken_replace)

    with pytest.raises(StoreFailedError) as excinfo:
        store.persist("ABC", b"payload")

    assert excinfo.value.identifier == "ABC"
    assert isinstance(excinfo.value.cause, OSError)
    assert list(tmp_path.iterdir()) == []


def test_remove_is_idempotent(tmp_path):
    store = ReportStore(tmp_path)
    path = store.persist("ABC", b"x")

    assert store.remove(path) is True
    assert store.remove(path) is False
    assert not path.exists()


def test_list_existing_skips_foreign_and_hidden_files(tmp_path):
    store = ReportStore(tmp_path)
    store.persist("B", b"2")
    store.persist("A", b"1")
    (tmp_path / "notes.txt").write_text("ignore me")
    (tmp_path / ".A.wellsdata.123.tmp").write_bytes(b"partial")
    (tmp_path / "dir.wellsdata").mkdir()

    reports = list(store.list_existing())

    assert [r.identifier for r in reports] == ["A", "B"]
    for report in reports:
        assert report.created_at.tzinfo is not None
        assert report.created_at <= datetime.now(timezone.utc)


def test_list_existing_on_missing_root(tmp_path):
    store = ReportStore(tmp_path / "missing")
    assert list(store.list_existing()) == []


def test_identifier_extension_provider(tmp_path):
    provider = IdentifierExtensionLocationProvider(tmp_path, ".crash")
    assert provider.report_path("X1") == tmp_path / "X1.crash"
    assert provider.identifier_for(tmp_path / "X1.crash") == "X1"
    assert provider.identifier_for(tmp_path / "X1.other") is None
    assert provider.identifier_for(tmp_path / "sub" / "X1.crash") is None
    assert provider.report_path("") is None
    assert provider.report_path("../escape") is None
    assert provider.report_path(".hidden") is None


def test_filename_provider(tmp_path):
    provider = FilenameIdentifierLocationProvider(tmp_path)
    store = ReportStore(tmp_path, provider)

    path = store.persist("REPORT-1", b"data")

    assert path == tmp_path / "REPORT-1"
    assert store.identifier_for(path) == "REPORT-1"
    assert [r.identifier for r in store.list_existing()] == ["REPORT-1"]


@pytest.mark.asyncio
async def test_async_helpers(tmp_path):
    store = ReportStore(tmp_path)
    path = await store.persist_async("ABC", b"payload")
    assert path.read_bytes() == b"payload"
    removed = await asyncio.gather(store.remove_async(path), store.remove_async(path))
    assert sorted(removed) == [False, True]


class ShardedProvider(ReportLocationProvider):
    """Stores ``ABCDEF`` as ``<base_dir>/AB/ABCDEF.wellsdata``."""

    def __init__(self, base_dir):
        self.base_dir = base_dir

    def report_path(self, identifier):
        if len(identifier) < 2:
            return None
        return self.base_dir / identifier[:2] / f"{identifier}.wellsdata"

    def identifier_for(self, path):
        if path.suffix != ".wellsdata" or path.parent.parent != self.base_dir:
            return None
        return path.stem


def test_list_existing_finds_sharded_reports(tmp_path):
    store = ReportStore(tmp_path, ShardedProvider(tmp_path))
    store.persist("ABCDEF", b"1")
    store.persist("CD1234", b"2")
    (tmp_path / ".cache").mkdir()
    (tmp_path / ".cache" / "ABFFFF.wellsdata").write_bytes(b"hidden dir")

    reports = list(store.list_existing())

    assert [r.identifier for r in reports] == ["ABCDEF", "CD1234"]
    assert reports[0].location == tmp_path / "AB" / "ABCDEF.wellsdata"
