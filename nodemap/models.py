import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from nodemap.config import (
    FIELD_CONNECTED_SINCE,
    FIELD_COUNTRY_CODE,
    FIELD_LATITUDE,
    FIELD_LONGITUDE,
    FIELD_ORGANIZATION,
    FIELD_PROTOCOL_VERSION,
    FIELD_USER_AGENT,
    MIN_RECORD_FIELDS,
)


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def finite_float(value: Any) -> Optional[float]:
    if not is_number(value):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass
class Peer:
    lat: float
    lon: float
    user_agent: Optional[str] = None
    country: Optional[str] = None
    protocol_version: Optional[int] = None
    organization: Optional[str] = None
    connected_since: Optional[float] = None

    @classmethod
    def from_record(cls, record: Any) -> Optional["Peer"]:
        if not isinstance(record, (list, tuple)) or len(record) < MIN_RECORD_FIELDS:
            return None

        lat = finite_float(record[FIELD_LATITUDE])
        lon = finite_float(record[FIELD_LONGITUDE])
        if lat is None or lon is None:
            return None

        version = record[FIELD_PROTOCOL_VERSION]

        return cls(
            lat=lat,
            lon=lon,
            user_agent=_text(record[FIELD_USER_AGENT]),
            country=_text(record[FIELD_COUNTRY_CODE]),
            protocol_version=version if is_number(version) else None,
            organization=_text(record[FIELD_ORGANIZATION]),
            connected_since=finite_float(record[FIELD_CONNECTED_SINCE]),
        )

    def to_dict(self) -> Dict:
        return {
            'lat': self.lat,
            'lon': self.lon,
            'userAgent': self.user_agent,
            'country': self.country,
            'protocolVersion': self.protocol_version,
            'organization': self.organization,
            'connectedSince': self.connected_since,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Peer":
        return cls(
            lat=data['lat'],
            lon=data['lon'],
            user_agent=data.get('userAgent'),
            country=data.get('country'),
            protocol_version=data.get('protocolVersion'),
            organization=data.get('organization'),
            connected_since=data.get('connectedSince'),
        )


@dataclass
class DensityCell:
    lat: float
    lon: float
    count: int = 1

    def as_point(self) -> List:
        return [self.lat, self.lon, self.count]


@dataclass
class SummaryStatistics:
    total_nodes: int = 0
    unique_countries: int = 0
    top_user_agents: Optional[List[Tuple[str, int]]] = None
    top_organizations: Optional[List[Tuple[str, int]]] = None
    protocol_versions: Optional[List[Tuple[Any, int]]] = None
    average_uptime: Optional[float] = None
    decentralization_score: Optional[float] = None

    @classmethod
    def zero(cls) -> "SummaryStatistics":
        return cls()

    def to_dict(self) -> Dict:
        data = {
            'totalNodes': self.total_nodes,
            'uniqueCountries': self.unique_countries,
        }
        if self.top_user_agents is not None:
            data['topUserAgents'] = [
                {'agent': agent, 'count': count} for agent, count in self.top_user_agents
            ]
        if self.top_organizations is not None:
            data['topOrganizations'] = [
                {'org': org, 'count': count} for org, count in self.top_organizations
            ]
        if self.protocol_versions is not None:
            data['protocolVersions'] = [
                {'version': version, 'count': count} for version, count in self.protocol_versions
            ]
        if self.average_uptime is not None:
            data['averageUptime'] = self.average_uptime
        if self.decentralization_score is not None:
            data['decentralizationScore'] = self.decentralization_score
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "SummaryStatistics":
        def pairs(key: str, name: str) -> Optional[List[Tuple]]:
            if key not in data:
                return None
            return [(item[name], item['count']) for item in data[key]]

        return cls(
            total_nodes=data['totalNodes'],
            unique_countries=data['uniqueCountries'],
            top_user_agents=pairs('topUserAgents', 'agent'),
            top_organizations=pairs('topOrganizations', 'org'),
            protocol_versions=pairs('protocolVersions', 'version'),
            average_uptime=data.get('averageUptime'),
            decentralization_score=data.get('decentralizationScore'),
        )


@dataclass
class AggregateResult:
    cells: List[DensityCell] = field(default_factory=list)
    peers: List[Peer] = field(default_factory=list)
    statistics: SummaryStatistics = field(default_factory=SummaryStatistics)
    max_intensity: int = 1

    def heatmap_points(self) -> List[List]:
        return [cell.as_point() for cell in self.cells]
