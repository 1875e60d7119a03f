"""Tests for the content-addressed store."""

import hashlib
from unittest.mock import MagicMock

import pytest

from festos_api.errors import StorageError, ValidationError
from festos_api.storage.content import ContentStoreProvider, compute_ref, object_key_for_ref


def test_put_returns_content_reference(content, fake_minio):
    ref = content.put(b"banner bytes", content_type="image/png")

    assert ref == "sha256:" + hashlib.sha256(b"banner bytes").hexdigest()
    assert ("test-content", object_key_for_ref(ref)) in fake_minio.objects
    assert "test-content" in fake_minio.buckets


def test_identical_bytes_stored_once(content, fake_minio):
    first = content.put(b"same")
    second = content.put(b"same")

    assert first == second
    assert fake_minio.put_calls == 1
    assert len(fake_minio.objects) == 1


def test_put_checks_supplied_hash(content):
    digest = hashlib.sha256(b"payload").hexdigest()

    assert content.put(b"payload", content_hash=digest) == f"sha256:{digest}"
    with pytest.raises(ValidationError) as exc_info:
        content.put(b"payload", content_hash="0" * 64)
    assert exc_info.value.field == "content_hash"


def test_put_rejects_empty_content(content, fake_minio):
    with pytest.raises(ValidationError):
        content.put(b"")
    assert fake_minio.put_calls == 0


def test_put_failure_is_storage_error(content, fake_minio):
    fake_minio.fail_puts = 1

    with pytest.raises(StorageError) as exc_info:
        content.put(b"data")

    assert exc_info.value.provider == "content"
    assert exc_info.value.operation == "put"


def test_get_round_trip_and_missing(content):
    ref = content.put_json({"b": 1, "a": [1, 2]})

    assert content.get_json(ref) == {"a": [1, 2], "b": 1}
    assert content.exists(ref)
    missing = compute_ref(b"never stored")
    assert content.get(missing) is None
    assert not content.exists(missing)


def test_json_encoding_is_canonical(content):
    assert content.put_json({"x": 1, "y": 2}) == content.put_json({"y": 2, "x": 1})


def test_get_detects_corrupted_object(content, fake_minio):
    ref = content.put(b"original")
    fake_minio.objects[("test-content", object_key_for_ref(ref))] = b"tampered"

    with pytest.raises(StorageError):
        content.get(ref)


@pytest.mark.parametrize("ref", ["", "sha256:xyz", "md5:" + "0" * 32, "0" * 64])
def test_invalid_reference(content, ref):
    with pytest.raises(ValidationError):
        content.get(ref)


def test_read_returns_documents_for_stored_refs(content):
    ref = content.put_json({"category": "music"})

    result = content.read({"refs": [ref, compute_ref(b"missing")]})

    assert result["total"] == 1
    assert result["records"][0]["document"] == {"category": "music"}


def test_health_check_reports_missing_bucket(fake_minio):
    provider = ContentStoreProvider(client=fake_minio, bucket="absent")

    result = provider.health_check()

    assert result["ok"] is False
    assert "absent" in result["error"]


def test_health_check_never_raises():
    client = MagicMock()
    client.bucket_exists.side_effect = ConnectionError("refused")
    provider = ContentStoreProvider(client=client, bucket="b")

    result = provider.health_check()

    assert result["ok"] is False
    assert result["latency_ms"] >= 0


def test_config_redacts_secrets(content):
    config = content.get_config()

    assert config["bucket"] == "test-content"
    assert "secret_key" not in config
    assert "access_key" not in config
