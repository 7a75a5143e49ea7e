import logging
import time
from typing import Callable, Dict, List, Optional

from nodemap.aggregator import aggregate, mock_cells, mock_peers
from nodemap.cache import CachedResult, KeyValueStore, MemoryStore, read_cache, write_cache
from nodemap.config import BITNODES_API_URL, DEFAULT_MAX_INTENSITY
from nodemap.errors import SnapshotError, UnknownError
from nodemap.fetcher import SnapshotFetcher
from nodemap.models import AggregateResult, Peer, SummaryStatistics

logger = logging.getLogger(__name__)


class NodeDashboard:
    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        url: str = BITNODES_API_URL,
        fetcher_factory: Callable[[str], SnapshotFetcher] = SnapshotFetcher,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else MemoryStore()
        self.url = url
        self.fetcher_factory = fetcher_factory
        self.clock = clock

        self.heatmap_points: List[List] = []
        self.peers: List[Peer] = []
        self.statistics = SummaryStatistics.zero()
        self.max_intensity = DEFAULT_MAX_INTENSITY
        self.loading = False
        self.error: Optional[str] = None
        self.from_cache = False
        self.fetched_at_ms: Optional[int] = None

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def refresh(self, force: bool = False) -> bool:
        """Run one load. Returns True when real data (fresh or cached) is shown."""
        if self.loading:
            logger.warning("Refresh already in progress, ignoring trigger")
            return False

        self.loading = True
        self.error = None
        try:
            if not force:
                cached = self._read_cache()
                if cached is not None:
                    self._apply_cached(cached)
                    return True

            async with self.fetcher_factory(self.url) as fetcher:
                nodes = await fetcher.fetch_nodes()

            result = aggregate(nodes, now=self.clock())
            self._apply_result(result)
            self._write_cache(result)
            return True
        except Exception as e:
            self._apply_fallback(e)
            return False
        finally:
            self.loading = False

    def _read_cache(self) -> Optional[CachedResult]:
        try:
            return read_cache(self.store, self._now_ms())
        except Exception as e:
            logger.warning(f"Could not read cache, fetching instead: {e}")
            return None

    def _write_cache(self, result: AggregateResult):
        now_ms = self._now_ms()
        try:
            write_cache(self.store, now_ms, result)
        except Exception as e:
            logger.warning(f"Could not write cache: {e}")
            return
        self.fetched_at_ms = now_ms

    def _apply_result(self, result: AggregateResult):
        self.heatmap_points = result.heatmap_points()
        self.peers = result.peers
        self.statistics = result.statistics
        self.max_intensity = result.max_intensity
        self.from_cache = False

    def _apply_cached(self, cached: CachedResult):
        age = (self._now_ms() - cached.fetched_at_ms) / 1000
        logger.info(f"Using cached snapshot result ({age:.0f}s old), skipping fetch")

        if cached.layers is not None:
            self._apply_result(cached.layers)
        else:
            logger.warning("Cache holds statistics only, showing mock map layers")
            self.heatmap_points = [cell.as_point() for cell in mock_cells()]
            self.peers = mock_peers()
            self.max_intensity = DEFAULT_MAX_INTENSITY
        self.statistics = cached.statistics
        self.from_cache = True
        self.fetched_at_ms = cached.fetched_at_ms

    def _apply_fallback(self, error: Exception):
        if not isinstance(error, SnapshotError):
            error = UnknownError(str(error) or "An unknown error occurred")

        logger.warning(f"Failed to fetch or process snapshot ({type(error).__name__}): {error}")
        logger.debug("Snapshot failure details", exc_info=True)

        self.error = str(error)
        self.heatmap_points = [cell.as_point() for cell in mock_cells()]
        self.peers = mock_peers()
        self.statistics = SummaryStatistics.zero()
        self.max_intensity = DEFAULT_MAX_INTENSITY
        self.from_cache = False

    def snapshot(self) -> Dict:
        return {
            'heatmapPoints': self.heatmap_points,
            'peers': [peer.to_dict() for peer in self.peers],
            'statistics': self.statistics.to_dict(),
            'maxIntensity': self.max_intensity,
            'loading': self.loading,
            'error': self.error,
            'fromCache': self.from_cache,
            'fetchedAt': self.fetched_at_ms,
        }
