import pytest


def _record(lat=40.71, lon=-74.01, user_agent="/Satoshi:27.0.0/", country="US",
            version=70016, organization="Hetzner Online GmbH", connected_since=1700000000):
    return [
        version,
        user_agent,
        connected_since,
        1033,
        870000,
        "node.example.org",
        "New York",
        country,
        lat,
        lon,
        "America/New_York",
        "AS24940",
        organization,
    ]


@pytest.fixture
def make_record():
    """Build a 13-field Bitnodes peer array with overridable fields."""
    return _record


@pytest.fixture
def make_nodes():
    def build(records):
        return {f"10.0.{i // 256}.{i % 256}:8333": record for i, record in enumerate(records)}
    return build
