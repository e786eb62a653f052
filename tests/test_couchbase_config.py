from containerkit.couchbase_bucket import Bucket
from containerkit.couchbase_config import (
    Config,
    with_analytics_service,
    with_bucket,
    with_credentials,
    with_eventing_service,
    with_image_name,
    with_index_storage_mode,
)
from containerkit.couchbase_services import (
    ANALYTICS,
    EVENTING,
    INDEX,
    KV,
    QUERY,
    SEARCH,
    IndexStorageMode,
)


def test_defaults():
    config = Config()
    assert config.enabled_services == [KV, QUERY, SEARCH, INDEX]
    assert config.username == "Administrator"
    assert config.image_name == "couchbase:6.5.1"
    assert config.index_storage_mode is IndexStorageMode.MEMORY_OPTIMIZED
    assert config.buckets == []
    assert config.is_enterprise is False


def test_default_lists_are_not_shared():
    first = Config()
    second = Config()
    with_eventing_service()(first)
    assert EVENTING in first.enabled_services
    assert EVENTING not in second.enabled_services


def test_enterprise_services_are_appended():
    config = Config()
    with_analytics_service()(config)
    with_eventing_service()(config)
    assert config.enabled_services[-2:] == [ANALYTICS, EVENTING]
    assert len(config.enabled_services) == 6


def test_credentials():
    config = Config()
    with_credentials("user", "secret")(config)
    assert config.username == "user"
    assert config.password == "secret"


def test_buckets_keep_order():
    config = Config()
    with_bucket(Bucket("first"))(config)
    with_bucket(Bucket("second").with_quota(200))(config)
    assert [b.name for b in config.buckets] == ["first", "second"]
    assert config.buckets[1].quota == 200


def test_image_name():
    config = Config()
    with_image_name("couchbase:community-7.1.1")(config)
    assert config.image_name == "couchbase:community-7.1.1"


def test_index_storage_mode_accepts_enum_and_value():
    config = Config()
    with_index_storage_mode(IndexStorageMode.PLASMA)(config)
    assert config.index_storage_mode is IndexStorageMode.PLASMA
    with_index_storage_mode("forestdb")(config)
    assert config.index_storage_mode is IndexStorageMode.FORESTDB