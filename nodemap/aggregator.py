import logging
import math
import time
from collections import Counter
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

from nodemap.config import (
    AGGREGATION_PRECISION,
    INTENSITY_SCALE,
    MAX_PEERS_FOR_MARKERS,
    MOCK_HEATMAP_POINTS,
    MOCK_PEERS,
    SECONDS_PER_DAY,
    TOP_N,
)
from nodemap.models import AggregateResult, DensityCell, Peer, SummaryStatistics

logger = logging.getLogger(__name__)

# Wide enough to quantize any finite float without InvalidOperation
_ROUNDING = Context(prec=400, rounding=ROUND_HALF_UP)


def mock_cells() -> List[DensityCell]:
    return [DensityCell(lat, lon, count) for lat, lon, count in MOCK_HEATMAP_POINTS]


def mock_peers() -> List[Peer]:
    return [Peer(**peer) for peer in MOCK_PEERS]


def round_coordinate(value: float, precision: int = AGGREGATION_PRECISION) -> float:
    """Round half away from zero on the exact binary value; -0.0 folds into 0.0."""
    quantum = Decimal(1).scaleb(-precision)
    rounded = Decimal(value).quantize(quantum, context=_ROUNDING)
    return float(rounded) + 0.0


def decode_peers(nodes: Dict[str, Any]) -> List[Peer]:
    peers = []
    for record in nodes.values():
        peer = Peer.from_record(record)
        if peer is not None:
            peers.append(peer)

    dropped = len(nodes) - len(peers)
    if dropped:
        logger.debug(f"Dropped {dropped} peer records without a usable location")
    return peers


def build_density_cells(peers: Iterable[Peer], precision: int = AGGREGATION_PRECISION) -> List[DensityCell]:
    cells: Dict[Tuple[float, float], DensityCell] = {}
    for peer in peers:
        key = (round_coordinate(peer.lat, precision), round_coordinate(peer.lon, precision))
        cell = cells.get(key)
        if cell is None:
            cells[key] = DensityCell(key[0], key[1], 1)
        else:
            cell.count += 1
    return list(cells.values())


def intensity_ceiling(max_count: int, scale: float = INTENSITY_SCALE) -> int:
    """Heatmap ``max`` kept below the busiest cell so it does not wash out the gradient."""
    return max(1, math.ceil(max_count * scale))


def top_counts(counts: Counter, n: Optional[int] = TOP_N) -> List[Tuple[Hashable, int]]:
    # sorted() is stable, so ties keep the order values were first seen
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ranked if n is None else ranked[:n]


def concentration_score(country_counts: Counter, total: int) -> float:
    """Herfindahl-Hirschman index of the per-country share of peers."""
    if total == 0:
        return 0.0
    return sum((count / total) ** 2 for count in country_counts.values())


def average_uptime(peers: Iterable[Peer], now: float) -> float:
    uptimes = [
        (now - peer.connected_since) / SECONDS_PER_DAY
        for peer in peers
        if peer.connected_since is not None
    ]
    if not uptimes:
        return 0.0
    return sum(uptimes) / len(uptimes)


def compute_statistics(peers: List[Peer], now: float) -> SummaryStatistics:
    user_agents: Counter = Counter()
    organizations: Counter = Counter()
    versions: Counter = Counter()
    countries: Counter = Counter()

    for peer in peers:
        if peer.user_agent is not None:
            user_agents[peer.user_agent] += 1
        if peer.organization is not None:
            organizations[peer.organization] += 1
        if peer.protocol_version is not None:
            versions[peer.protocol_version] += 1
        if peer.country is not None:
            countries[peer.country] += 1

    total = len(peers)
    return SummaryStatistics(
        total_nodes=total,
        unique_countries=len(countries),
        top_user_agents=top_counts(user_agents),
        top_organizations=top_counts(organizations),
        protocol_versions=top_counts(versions, n=None),
        average_uptime=average_uptime(peers, now),
        decentralization_score=concentration_score(countries, total),
    )


def aggregate(nodes: Dict[str, Any], now: Optional[float] = None) -> AggregateResult:
    """Heatmap cells, capped marker list and statistics for a snapshot's ``nodes`` map."""
    if now is None:
        now = time.time()

    peers = decode_peers(nodes)
    logger.info(f"Decoded {len(peers)} of {len(nodes)} peer records")

    cells = build_density_cells(peers)
    true_max = max((cell.count for cell in cells), default=0)
    max_intensity = intensity_ceiling(true_max)
    logger.info(
        f"Aggregated into {len(cells)} heatmap cells, "
        f"max intensity {max_intensity} (true max was {true_max})"
    )

    statistics = compute_statistics(peers, now)

    if not cells:
        logger.warning("No heatmap cells produced, using mock heatmap points")
        cells = mock_cells()

    marker_peers = peers[:MAX_PEERS_FOR_MARKERS]
    if not marker_peers:
        logger.warning("No valid peers, using mock peers for markers")
        marker_peers = mock_peers()

    return AggregateResult(
        cells=cells,
        peers=marker_peers,
        statistics=statistics,
        max_intensity=max_intensity,
    )
