"""Tests for the S3 object store."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from core.exceptions import StorageError
from services.object_store import S3ObjectStore, raw_streams_key


@pytest.fixture
def s3():
    return MagicMock()


def test_put_returns_virtual_hosted_url(s3):
    store = S3ObjectStore("activities", client=s3)
    key = raw_streams_key("strava", "abc")

    location = store.put(key, b"{}", content_type="application/json")

    assert location == "https://activities.s3.amazonaws.com/activity_details/strava/raw/abc.json"
    s3.put_object.assert_called_once()
    assert s3.put_object.call_args.kwargs["Key"] == key


@pytest.mark.parametrize("ref", [
    "activity_details/strava/raw/abc.json",
    "https://activities.s3.amazonaws.com/activity_details/strava/raw/abc.json",
    "s3://activities/activity_details/strava/raw/abc.json",
])
def test_key_for_accepts_keys_and_urls(s3, ref):
    assert S3ObjectStore("activities", client=s3).key_for(ref) == "activity_details/strava/raw/abc.json"


def test_client_errors_become_storage_errors(s3):
    s3.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
    with pytest.raises(StorageError):
        S3ObjectStore("activities", client=s3).get("missing.json")


def test_bucket_required(s3):
    with pytest.raises(ValueError):
        S3ObjectStore("", client=s3)
