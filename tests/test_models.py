"""Tests for cookie and snapshot records."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from mcp_session_snapshot.models import (
    CookieRecord,
    RestoreReport,
    SnapshotRecord,
    extract_domain,
)
from conftest import SAMPLE_COOKIES, make_snapshot


def test_cookie_reads_wire_names():
    cookie = CookieRecord.model_validate(SAMPLE_COOKIES[0])
    assert cookie.expiration_date == 4102444800.0
    assert cookie.host_only is True
    assert cookie.http_only is True
    assert cookie.same_site == "lax"
    assert cookie.store_id == "default"


def test_session_cookie_has_no_expiration():
    cookie = CookieRecord(name="a", session=True, expiration_date=123.0)
    assert cookie.session is True
    assert cookie.expiration_date is None


def test_missing_expiration_means_session():
    cookie = CookieRecord(name="a", session=False)
    assert cookie.session is True
    assert cookie.expiration_date is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("None", "no_restriction"),
        ("no_restriction", "no_restriction"),
        ("Lax", "lax"),
        ("STRICT", "strict"),
        (None, "unspecified"),
    ],
)
def test_same_site_spellings(raw, expected):
    cookie = CookieRecord.model_validate({"name": "a", "sameSite": raw})
    assert cookie.same_site == expected


def test_unknown_same_site_rejected():
    with pytest.raises(PydanticValidationError):
        CookieRecord.model_validate({"name": "a", "sameSite": "sometimes"})


def test_cookie_dump_uses_wire_names():
    dumped = CookieRecord.model_validate(SAMPLE_COOKIES[0]).model_dump(by_alias=True)
    assert dumped["expirationDate"] == 4102444800.0
    assert dumped["sameSite"] == "lax"
    assert dumped["hostOnly"] is True
    assert dumped["storeId"] == "default"


def test_snapshot_wire_shape():
    snapshot = make_snapshot(session_storage={"tab": "1"}, indexed_db={"app": {"items": [1, 2]}})
    wire = snapshot.to_wire()
    assert wire["createdAt"]
    assert wire["localStorage"] == {"token": "xyz"}
    assert wire["sessionStorage"] == {"tab": "1"}
    assert wire["indexedDB"] == {"app": {"items": [1, 2]}}
    assert wire["cookieCount"] == 1
    assert wire["localStorageCount"] == 1
    assert wire["sessionStorageCount"] == 1
    assert wire["indexedDBCount"] == 1
    assert snapshot.serialized_size() == len(snapshot.to_json().encode("utf-8"))


def test_snapshot_accepts_legacy_timestamp():
    snapshot = SnapshotRecord.model_validate(
        {"name": "old", "domain": "example.com", "timestamp": "2023-01-02T03:04:05+00:00"}
    )
    assert snapshot.created_at == datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_snapshot_reloads_from_json():
    snapshot = make_snapshot()
    reloaded = SnapshotRecord.model_validate_json(snapshot.to_json())
    assert reloaded.id == snapshot.id
    assert reloaded.created_at == snapshot.created_at
    assert reloaded.cookies == snapshot.cookies


def test_snapshot_identity_is_frozen():
    snapshot = make_snapshot()
    with pytest.raises(PydanticValidationError):
        snapshot.domain = "other.com"


def test_snapshot_name_required():
    with pytest.raises(PydanticValidationError):
        SnapshotRecord(name="", domain="example.com")


def test_from_capture_derives_domain():
    snapshot = SnapshotRecord.from_capture(name="x", url="https://shop.example.com:8443/cart")
    assert snapshot.domain == "shop.example.com:8443"
    assert snapshot.id.startswith("snap-")


def test_without_databases_keeps_everything_else():
    snapshot = make_snapshot(indexed_db={"app": {"items": [1]}})
    slim = snapshot.without_databases()
    assert slim.indexed_db == {}
    assert slim.id == snapshot.id
    assert slim.cookies == snapshot.cookies
    assert slim.local_storage == snapshot.local_storage


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/a", "example.com"),
        ("http://user:pw@example.com:8080/", "example.com:8080"),
        ("about:blank", ""),
        ("file:///tmp/x.html", ""),
    ],
)
def test_extract_domain(url, expected):
    assert extract_domain(url) == expected


def test_restore_report_partial_flags():
    report = RestoreReport(snapshot_id="s", cookies_restored=2, local_storage_restored=1, session_storage_restored=2)
    assert report.key_value_items_restored == 3
    assert report.partial is False

    report.cookies_failed = 1
    assert report.partial is True

    other = RestoreReport(snapshot_id="s", databases_total=2, databases_restored=1)
    assert other.partial is True
