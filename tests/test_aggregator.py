import math
from collections import Counter

import pytest

from nodemap import aggregator
from nodemap.aggregator import (
    aggregate,
    build_density_cells,
    concentration_score,
    intensity_ceiling,
    round_coordinate,
    top_counts,
)
from nodemap.config import MOCK_HEATMAP_POINTS
from nodemap.models import Peer

NOW = 1700000000 + 10 * 86400


def test_invalid_records_produce_no_peers(make_record, make_nodes):
    nodes = make_nodes([
        make_record()[:12],
        make_record(lat="40.7"),
        make_record(lon=math.nan),
        "not a record",
    ])

    result = aggregate(nodes, now=NOW)

    assert result.statistics.total_nodes == 0
    assert [peer.country for peer in result.peers] == ["US", "GB"]
    assert all(peer.user_agent == "/Mock:1.0/" for peer in result.peers)


def test_empty_snapshot_uses_mocks(make_nodes):
    result = aggregate(make_nodes([]), now=NOW)

    assert result.heatmap_points() == [list(point) for point in MOCK_HEATMAP_POINTS]
    assert len(result.peers) == 2
    assert result.max_intensity == 1
    assert result.statistics.total_nodes == 0
    assert result.statistics.unique_countries == 0
    assert result.statistics.average_uptime == 0
    assert result.statistics.decentralization_score == 0


def test_cell_counts_sum_to_peer_count(make_record, make_nodes):
    records = [
        make_record(lat=40.71, lon=-74.01),
        make_record(lat=40.74, lon=-73.96),
        make_record(lat=51.51, lon=-0.13),
        make_record(lat=35.68, lon=139.69),
        make_record(lat=40.66, lon=-74.04),
    ]

    result = aggregate(make_nodes(records), now=NOW)

    assert sum(cell.count for cell in result.cells) == len(result.peers) == 5
    assert result.heatmap_points()[0] == [40.7, -74.0, 3]


def test_aggregate_is_idempotent(make_record, make_nodes):
    nodes = make_nodes([
        make_record(lat=40.71, lon=-74.01, user_agent="A"),
        make_record(lat=51.5, lon=-0.1, user_agent="B", country="GB"),
        make_record(lat=51.5, lon=-0.1, user_agent="B", country="GB"),
    ])

    assert aggregate(nodes, now=NOW) == aggregate(nodes, now=NOW)


def test_marker_list_is_capped(make_record, make_nodes, monkeypatch):
    monkeypatch.setattr(aggregator, "MAX_PEERS_FOR_MARKERS", 5)
    records = [make_record(lat=10 + i, lon=20 + i) for i in range(8)]

    result = aggregate(make_nodes(records), now=NOW)

    assert len(result.peers) == 5
    assert result.statistics.total_nodes == 8
    assert sum(cell.count for cell in result.cells) == 8


@pytest.mark.parametrize("max_count, expected", [(12, 10), (1, 1), (0, 1), (5, 4), (100, 80)])
def test_intensity_ceiling(max_count, expected):
    assert intensity_ceiling(max_count) == expected


def test_aggregate_max_intensity(make_record, make_nodes):
    records = [make_record(lat=40.7, lon=-74.0) for _ in range(12)] + [make_record(lat=1.0, lon=1.0)]

    assert aggregate(make_nodes(records), now=NOW).max_intensity == 10


@pytest.mark.parametrize("value, expected", [
    (40.71, 40.7),
    (40.75, 40.8),
    (0.25, 0.3),
    (-0.25, -0.3),
    (-74.04, -74.0),
    (139.6917, 139.7),
])
def test_round_coordinate(value, expected):
    assert round_coordinate(value) == expected


def test_negative_zero_shares_cell():
    cells = build_density_cells([Peer(lat=-0.04, lon=0.01), Peer(lat=0.04, lon=-0.01)])

    assert len(cells) == 1
    assert cells[0].count == 2
    assert math.copysign(1, cells[0].lat) == 1


def test_concentration_single_country(make_record, make_nodes):
    result = aggregate(make_nodes([make_record(country="US") for _ in range(100)]), now=NOW)

    assert result.statistics.decentralization_score == pytest.approx(1.0)
    assert f"{result.statistics.decentralization_score:.4f}" == "1.0000"


def test_concentration_even_split(make_record, make_nodes):
    records = [make_record(country="US") for _ in range(50)] + [make_record(country="DE") for _ in range(50)]

    result = aggregate(make_nodes(records), now=NOW)

    assert result.statistics.decentralization_score == pytest.approx(0.5)
    assert result.statistics.unique_countries == 2


def test_concentration_bounds():
    score = concentration_score(Counter({"US": 3, "DE": 2, "FR": 1}), 7)

    assert 0 <= score <= 1
    assert concentration_score(Counter(), 0) == 0


def test_top_counts_breaks_ties_by_encounter_order():
    counts = Counter()
    for agent in ["A", "B", "C", "D"] + ["A"] * 4 + ["B"] * 4 + ["C"] * 2:
        counts[agent] += 1

    assert top_counts(counts) == [("A", 5), ("B", 5), ("C", 3)]


def test_top_user_agents_follow_first_seen_order(make_record, make_nodes):
    agents = ["B", "A", "C", "D"] + ["A"] * 4 + ["B"] * 4 + ["C"] * 2
    records = [make_record(user_agent=agent) for agent in agents]

    stats = aggregate(make_nodes(records), now=NOW).statistics

    assert stats.top_user_agents == [("B", 5), ("A", 5), ("C", 3)]


def test_protocol_versions_include_all_sorted_by_frequency(make_record, make_nodes):
    versions = [70015, 70016, 70016, 60002, 70016, 70015]

    stats = aggregate(make_nodes([make_record(version=v) for v in versions]), now=NOW).statistics

    assert stats.protocol_versions == [(70016, 3), (70015, 2), (60002, 1)]


def test_null_values_excluded_from_tables(make_record, make_nodes):
    records = [
        make_record(country=None, organization=None, user_agent=None),
        make_record(country="US", organization="Amazon.com, Inc."),
    ]

    stats = aggregate(make_nodes(records), now=NOW).statistics

    assert stats.total_nodes == 2
    assert stats.unique_countries == 1
    assert stats.top_organizations == [("Amazon.com, Inc.", 1)]
    assert stats.top_user_agents == [("/Satoshi:27.0.0/", 1)]
    assert stats.decentralization_score == pytest.approx(0.25)


def test_average_uptime(make_record, make_nodes):
    records = [
        make_record(connected_since=NOW - 10 * 86400),
        make_record(connected_since=NOW - 8 * 86400),
        make_record(connected_since=None),
    ]

    stats = aggregate(make_nodes(records), now=NOW).statistics

    assert stats.average_uptime == pytest.approx(9.0)


def test_average_uptime_without_connection_times(make_record, make_nodes):
    stats = aggregate(make_nodes([make_record(connected_since=None)]), now=NOW).statistics

    assert stats.average_uptime == 0


def test_huge_integer_coordinate_is_dropped(make_record, make_nodes):
    nodes = make_nodes([make_record(), make_record(lat=10 ** 500), make_record(connected_since=10 ** 500)])

    result = aggregate(nodes, now=NOW)

    assert result.statistics.total_nodes == 2
    assert result.heatmap_points() == [[40.7, -74.0, 2]]
    assert result.statistics.average_uptime == pytest.approx((NOW - 1700000000) / 86400)
