import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Optional

from nodemap.config import (
    CACHE_KEY_DATA,
    CACHE_KEY_LAYERS,
    CACHE_KEY_TIMESTAMP,
    CACHE_TTL_MS,
    DEFAULT_CACHE_PATH,
)
from nodemap.models import AggregateResult, DensityCell, Peer, SummaryStatistics

logger = logging.getLogger(__name__)

CACHE_KEYS = (CACHE_KEY_TIMESTAMP, CACHE_KEY_DATA, CACHE_KEY_LAYERS)


class KeyValueStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def get_many(self, keys: List[str]) -> Dict[str, Optional[str]]:
        return {key: self.get(key) for key in keys}

    def set_many(self, items: Dict[str, str]):
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set_many(self, items: Dict[str, str]):
        self.data.update(items)


class SQLiteStore(KeyValueStore):
    def __init__(self, db_path: str = DEFAULT_CACHE_PATH):
        self.db_path = db_path
        self.init_database()

    def init_database(self):
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        conn.commit()
        conn.close()
        logger.debug(f"Cache initialized at {self.db_path}")

    def get(self, key: str) -> Optional[str]:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute('SELECT value FROM kv WHERE key = ?', (key,)).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def get_many(self, keys: List[str]) -> Dict[str, Optional[str]]:
        placeholders = ', '.join('?' for _ in keys)
        conn = sqlite3.connect(self.db_path)
        try:
            rows = conn.execute(
                f'SELECT key, value FROM kv WHERE key IN ({placeholders})', list(keys)
            ).fetchall()
        finally:
            conn.close()
        found = dict(rows)
        return {key: found.get(key) for key in keys}

    def set_many(self, items: Dict[str, str]):
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.executemany('''
                INSERT OR REPLACE INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            ''', list(items.items()))
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()


@dataclass
class CachedResult:
    fetched_at_ms: int
    statistics: SummaryStatistics
    layers: Optional[AggregateResult] = None


def _encode_layers(result: AggregateResult) -> str:
    return json.dumps({
        'heatmap': result.heatmap_points(),
        'peers': [peer.to_dict() for peer in result.peers],
        'maxIntensity': result.max_intensity,
    }, separators=(',', ':'))


def _decode_layers(raw: str, statistics: SummaryStatistics) -> AggregateResult:
    data = json.loads(raw)
    return AggregateResult(
        cells=[DensityCell(lat, lon, count) for lat, lon, count in data['heatmap']],
        peers=[Peer.from_dict(peer) for peer in data['peers']],
        statistics=statistics,
        max_intensity=data['maxIntensity'],
    )


def read_cache(store: KeyValueStore, now_ms: int, ttl_ms: int = CACHE_TTL_MS) -> Optional[CachedResult]:
    values = store.get_many(list(CACHE_KEYS))
    raw_timestamp = values[CACHE_KEY_TIMESTAMP]
    raw_data = values[CACHE_KEY_DATA]
    if raw_timestamp is None or raw_data is None:
        return None

    try:
        fetched_at = int(raw_timestamp)
    except ValueError:
        logger.warning(f"Ignoring cache with unreadable timestamp {raw_timestamp!r}")
        return None

    age = now_ms - fetched_at
    if age >= ttl_ms:
        logger.info(f"Cache expired ({age / 1000:.0f}s old)")
        return None

    try:
        statistics = SummaryStatistics.from_dict(json.loads(raw_data))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Ignoring unreadable cached statistics: {e}")
        return None

    layers = None
    raw_layers = values[CACHE_KEY_LAYERS]
    if raw_layers is not None:
        try:
            layers = _decode_layers(raw_layers, statistics)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable cached map layers: {e}")

    return CachedResult(fetched_at_ms=fetched_at, statistics=statistics, layers=layers)


def write_cache(store: KeyValueStore, now_ms: int, result: AggregateResult):
    store.set_many({
        CACHE_KEY_TIMESTAMP: str(now_ms),
        CACHE_KEY_DATA: json.dumps(result.statistics.to_dict()),
        CACHE_KEY_LAYERS: _encode_layers(result),
    })
    logger.info(f"Cached snapshot result at {now_ms}")
