import dataclasses

import pytest

from containerkit.couchbase_bucket import Bucket


def test_defaults():
    bucket = Bucket("testBucket")
    assert bucket.name == "testBucket"
    assert bucket.flush_enabled is False
    assert bucket.query_primary_index is True
    assert bucket.quota == 100
    assert bucket.num_replicas == 0


@pytest.mark.parametrize(
    "requested, expected",
    [(-1, 0), (0, 0), (2, 2), (3, 3), (7, 3)],
)
def test_replicas_are_clamped(requested, expected):
    assert Bucket("b").with_replicas(requested).num_replicas == expected


@pytest.mark.parametrize("requested, expected", [(10, 100), (100, 100), (250, 250)])
def test_quota_has_minimum(requested, expected):
    assert Bucket("b").with_quota(requested).quota == expected


def test_flush_and_primary_index():
    bucket = Bucket("b").with_flush_enabled(True).with_primary_index(False)
    assert bucket.flush_enabled is True
    assert bucket.query_primary_index is False


def test_with_methods_leave_original_untouched():
    original = Bucket("b")
    changed = original.with_replicas(2).with_quota(300).with_flush_enabled(True)
    assert original == Bucket("b")
    assert changed.name == original.name
    assert changed != original


def test_bucket_is_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        Bucket("b").quota = 500