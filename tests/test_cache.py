import json

from nodemap.cache import MemoryStore, SQLiteStore, read_cache, write_cache
from nodemap.config import CACHE_KEY_DATA, CACHE_KEY_LAYERS, CACHE_KEY_TIMESTAMP, CACHE_TTL_MS
from nodemap.models import AggregateResult, DensityCell, Peer, SummaryStatistics

FETCHED_AT = 1_700_000_000_000


def sample_result():
    return AggregateResult(
        cells=[DensityCell(40.7, -74.0, 2), DensityCell(51.5, -0.1, 1)],
        peers=[
            Peer(lat=40.71, lon=-74.01, user_agent="/Satoshi:27.0.0/", country="US", protocol_version=70016),
            Peer(lat=51.5, lon=-0.12, country="GB", organization="OVH SAS", connected_since=1690000000),
        ],
        statistics=SummaryStatistics(
            total_nodes=3,
            unique_countries=2,
            top_user_agents=[("/Satoshi:27.0.0/", 1)],
            top_organizations=[("OVH SAS", 1)],
            protocol_versions=[(70016, 1)],
            average_uptime=115.74,
            decentralization_score=0.5555555555555556,
        ),
        max_intensity=2,
    )


def test_write_cache_sets_all_keys():
    store = MemoryStore()

    write_cache(store, FETCHED_AT, sample_result())

    assert store.data[CACHE_KEY_TIMESTAMP] == str(FETCHED_AT)
    assert json.loads(store.data[CACHE_KEY_DATA])['totalNodes'] == 3
    assert CACHE_KEY_LAYERS in store.data


def test_read_cache_hit_returns_same_result():
    store = MemoryStore()
    result = sample_result()
    write_cache(store, FETCHED_AT, result)

    cached = read_cache(store, FETCHED_AT + CACHE_TTL_MS - 1)

    assert cached.fetched_at_ms == FETCHED_AT
    assert cached.statistics == result.statistics
    assert cached.layers == result


def test_read_cache_expires():
    store = MemoryStore()
    write_cache(store, FETCHED_AT, sample_result())

    assert read_cache(store, FETCHED_AT + CACHE_TTL_MS) is None


def test_read_cache_empty_store():
    assert read_cache(MemoryStore(), FETCHED_AT) is None


def test_read_cache_needs_both_keys():
    store = MemoryStore({CACHE_KEY_TIMESTAMP: str(FETCHED_AT)})

    assert read_cache(store, FETCHED_AT) is None


def test_unreadable_entries_are_misses():
    stats = json.dumps(SummaryStatistics.zero().to_dict())

    assert read_cache(MemoryStore({CACHE_KEY_TIMESTAMP: "yesterday", CACHE_KEY_DATA: stats}), FETCHED_AT) is None
    assert read_cache(MemoryStore({CACHE_KEY_TIMESTAMP: str(FETCHED_AT), CACHE_KEY_DATA: "{oops"}), FETCHED_AT) is None


def test_statistics_only_cache_has_no_layers():
    stats = SummaryStatistics(total_nodes=7, unique_countries=1)
    store = MemoryStore({
        CACHE_KEY_TIMESTAMP: str(FETCHED_AT),
        CACHE_KEY_DATA: json.dumps(stats.to_dict()),
    })

    cached = read_cache(store, FETCHED_AT + 1000)

    assert cached.statistics == stats
    assert cached.layers is None


def test_sqlite_store_round_trip(tmp_path):
    db_path = str(tmp_path / "cache.db")
    store = SQLiteStore(db_path)

    store.set_many({"a": "1", "b": "2"})
    store.set_many({"a": "3"})

    assert store.get("a") == "3"
    assert store.get_many(["a", "b", "c"]) == {"a": "3", "b": "2", "c": None}

    assert SQLiteStore(db_path).get("b") == "2"


def test_sqlite_store_persists_cache(tmp_path):
    db_path = str(tmp_path / "cache.db")
    write_cache(SQLiteStore(db_path), FETCHED_AT, sample_result())

    cached = read_cache(SQLiteStore(db_path), FETCHED_AT + 60_000)

    assert cached.statistics == sample_result().statistics
