BITNODES_API_URL = "https://bitnodes.io/api/v1/snapshots/latest/"

DEFAULT_OUTPUT_DIR = "frontend"
DEFAULT_CACHE_PATH = "nodemap_cache.db"
DASHBOARD_JSON = "dashboard.json"
DASHBOARD_HTML = "index.html"
DEFAULT_PORT = 8000

CACHE_TTL_MS = 600_000
CACHE_KEY_TIMESTAMP = "last_fetch"
CACHE_KEY_DATA = "last_data"
CACHE_KEY_LAYERS = "last_layers"

AGGREGATION_PRECISION = 1
MAX_PEERS_FOR_MARKERS = 10_000
INTENSITY_SCALE = 0.8
DEFAULT_MAX_INTENSITY = 50
TOP_N = 3
ZOOM_THRESHOLD = 9
REFRESH_INTERVAL = 600

SECONDS_PER_DAY = 86400

# Positions inside a raw Bitnodes peer array
FIELD_PROTOCOL_VERSION = 0
FIELD_USER_AGENT = 1
FIELD_CONNECTED_SINCE = 2
FIELD_COUNTRY_CODE = 7
FIELD_LATITUDE = 8
FIELD_LONGITUDE = 9
FIELD_ORGANIZATION = 12
MIN_RECORD_FIELDS = 13

MOCK_HEATMAP_POINTS = [
    (40.7, -74.0, 25),
    (51.5, -0.1, 18),
    (35.7, 139.7, 12),
    (-33.9, 151.2, 9),
]

MOCK_PEERS = [
    {'lat': 40.7128, 'lon': -74.006, 'user_agent': "/Mock:1.0/", 'country': "US"},
    {'lat': 51.5074, 'lon': -0.1278, 'user_agent': "/Mock:1.0/", 'country': "GB"},
]
