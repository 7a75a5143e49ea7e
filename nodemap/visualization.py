#!/usr/bin/env python3

import json
import logging
from pathlib import Path
from typing import Dict

from nodemap.config import DASHBOARD_HTML, DASHBOARD_JSON, DEFAULT_OUTPUT_DIR, ZOOM_THRESHOLD

logger = logging.getLogger(__name__)


def _embed_json(data: Dict) -> str:
    # Keep "</script>" inside strings from closing the tag
    return json.dumps(data, ensure_ascii=False).replace('</', '<\\/')


def export_dashboard_json(state: Dict, json_file: str = f"{DEFAULT_OUTPUT_DIR}/{DASHBOARD_JSON}") -> str:
    with open(json_file, 'w', encoding='utf-8') as f:
        json.dump(state, f, ensure_ascii=False)
    logger.info(f"Exported {len(state['heatmapPoints'])} heatmap points and {len(state['peers'])} peers to {json_file}")
    return json_file


def render_dashboard_html(state: Dict, zoom_threshold: int = ZOOM_THRESHOLD) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Bitcoin Node Map</title>

    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.3/dist/leaflet.css" />
    <link rel="stylesheet" href="https://unpkg.com/leaflet.markercluster@1.5.3/dist/MarkerCluster.css" />
    <link rel="stylesheet" href="https://unpkg.com/leaflet.markercluster@1.5.3/dist/MarkerCluster.Default.css" />

    <style>
        * {{
            margin: 0;
            padding: 0;
            box-sizing: border-box;
        }}

        html, body {{
            width: 100%;
            height: 100%;
            overflow: hidden;
            background: #000;
            color: #00f9ff;
            font-family: monospace;
        }}

        header {{
            display: flex;
            justify-content: space-between;
            align-items: center;
            padding: 12px 16px;
            border-bottom: 1px solid #00f9ff;
            height: 56px;
        }}

        #map {{
            position: absolute;
            top: 56px;
            bottom: 0;
            left: 0;
            right: 0;
            background: #000;
        }}

        .error-banner {{
            position: fixed;
            top: 56px;
            left: 0;
            right: 0;
            z-index: 1100;
            padding: 10px;
            text-align: center;
            background: #991b1b;
            color: white;
        }}

        .analytics {{
            position: fixed;
            bottom: 16px;
            right: 16px;
            z-index: 1000;
            width: 260px;
        }}

        .analytics button {{
            margin-bottom: 8px;
            padding: 6px 12px;
            background: #000;
            color: #00f9ff;
            border: 1px solid #00f9ff;
            border-radius: 4px;
            cursor: pointer;
        }}

        .analytics-panel {{
            background: rgba(0, 0, 0, 0.9);
            border: 1px solid #00f9ff;
            border-radius: 8px;
            padding: 14px;
            box-shadow: 0 0 10px #00f9ff;
        }}

        .analytics-panel h2 {{
            font-size: 16px;
            margin-bottom: 8px;
        }}

        .analytics-panel p, .analytics-panel li {{
            margin: 4px 0;
            font-size: 13px;
        }}

        .analytics-panel ul {{
            padding-left: 18px;
        }}

        .hidden {{
            display: none;
        }}
    </style>
</head>
<body>
    <header>
        <h1>Bitcoin Node Map</h1>
        <div id="zoom-status">Zoom: 3 ( Mode: Heatmap )</div>
    </header>
    <div class="error-banner hidden" id="error-banner"></div>

    <div id="map"></div>

    <div class="analytics">
        <button id="analytics-toggle">Hide Analytics</button>
        <div class="analytics-panel" id="analytics-panel">
            <h2>Node Analytics</h2>
            <div id="analytics-content"></div>
        </div>
    </div>

    <script src="https://unpkg.com/leaflet@1.9.3/dist/leaflet.js"></script>
    <script src="https://unpkg.com/leaflet.heat@0.2.0/dist/leaflet-heat.js"></script>
    <script src="https://unpkg.com/leaflet.markercluster@1.5.3/dist/leaflet.markercluster.js"></script>

    <script>
        const ZOOM_THRESHOLD = {zoom_threshold};
        const initialState = {_embed_json(state)};

        const map = L.map('map', {{
            center: [20, 0],
            zoom: 3,
            minZoom: 2,
            maxBounds: [[-85, -180], [85, 180]],
            maxBoundsViscosity: 1.0
        }});

        L.tileLayer('https://{{s}}.basemaps.cartocdn.com/dark_all/{{z}}/{{x}}/{{y}}{{r}}.png', {{
            attribution: '© <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> © <a href="https://carto.com/attributions">CARTO</a>',
            noWrap: true
        }}).addTo(map);

        let heatmapLayer = null;
        let clusterGroup = null;

        function escapeHtml(text) {{
            const div = document.createElement('div');
            div.textContent = text;
            return div.innerHTML;
        }}

        function truncate(text, length) {{
            return text.length > length ? text.substring(0, length) + '...' : text;
        }}

        function buildClusterGroup(peers) {{
            const group = L.markerClusterGroup({{
                maxClusterRadius: 60,
                spiderfyOnMaxZoom: true,
                showCoverageOnHover: false,
                iconCreateFunction: function(cluster) {{
                    const count = cluster.getChildCount();
                    let size = 40;
                    let className = 'marker-cluster marker-cluster-small';
                    if (count >= 10) {{
                        size = 50;
                        className = 'marker-cluster marker-cluster-medium';
                    }}
                    if (count >= 100) {{
                        size = 60;
                        className = 'marker-cluster marker-cluster-large';
                    }}
                    return L.divIcon({{
                        html: `<div><span>${{count}}</span></div>`,
                        className: className,
                        iconSize: [size, size]
                    }});
                }}
            }});

            peers.forEach(peer => {{
                const marker = L.circleMarker([peer.lat, peer.lon], {{
                    radius: 5,
                    color: '#00f9ff',
                    weight: 2,
                    fillColor: '#ff0099',
                    fillOpacity: 0.7
                }});

                let tooltip = `<b>Node</b><br/>Lat: ${{peer.lat.toFixed(4)}}, Lon: ${{peer.lon.toFixed(4)}}`;
                if (peer.country) tooltip += `<br/>Country: ${{escapeHtml(peer.country)}}`;
                if (peer.userAgent) tooltip += `<br/>Agent: ${{escapeHtml(truncate(peer.userAgent, 30))}}`;
                if (peer.organization) tooltip += `<br/>Org: ${{escapeHtml(peer.organization)}}`;

                marker.bindTooltip(tooltip, {{ direction: 'top', offset: [0, -5] }});
                group.addLayer(marker);
            }});
            return group;
        }}

        function renderAnalytics(stats) {{
            let html = `<p><b>Total Nodes:</b> ${{stats.totalNodes.toLocaleString()}}</p>`;
            html += `<p><b>Unique Countries:</b> ${{stats.uniqueCountries}}</p>`;
            if (stats.protocolVersions) {{
                html += `<p><b>Protocol Versions:</b> ${{stats.protocolVersions.length}} unique</p>`;
            }}
            if (stats.averageUptime !== undefined && stats.averageUptime > 0) {{
                html += `<p><b>Avg Uptime:</b> ${{stats.averageUptime.toFixed(1)}} days</p>`;
            }}
            if (stats.decentralizationScore !== undefined) {{
                html += `<p><b>Decentralization (HHI):</b> ${{stats.decentralizationScore.toFixed(4)}}</p>`;
            }}
            if (stats.topUserAgents && stats.topUserAgents.length > 0) {{
                html += '<p><b>Top User Agents:</b></p><ul>';
                stats.topUserAgents.forEach(ua => {{
                    html += `<li>${{escapeHtml(truncate(ua.agent, 20))}}: ${{ua.count}}</li>`;
                }});
                html += '</ul>';
            }}
            if (stats.topOrganizations && stats.topOrganizations.length > 0) {{
                html += '<p><b>Top Organizations:</b></p><ul>';
                stats.topOrganizations.forEach(org => {{
                    html += `<li>${{escapeHtml(truncate(org.org, 20))}}: ${{org.count}}</li>`;
                }});
                html += '</ul>';
            }}
            document.getElementById('analytics-content').innerHTML = html;
        }}

        function updateLayers() {{
            const zoom = map.getZoom();
            const showHeatmap = zoom < ZOOM_THRESHOLD;

            if (heatmapLayer) {{
                if (showHeatmap && !map.hasLayer(heatmapLayer)) map.addLayer(heatmapLayer);
                if (!showHeatmap && map.hasLayer(heatmapLayer)) map.removeLayer(heatmapLayer);
            }}
            if (clusterGroup) {{
                if (!showHeatmap && !map.hasLayer(clusterGroup)) map.addLayer(clusterGroup);
                if (showHeatmap && map.hasLayer(clusterGroup)) map.removeLayer(clusterGroup);
            }}

            document.getElementById('zoom-status').textContent =
                `Zoom: ${{zoom}} ( Mode: ${{showHeatmap ? 'Heatmap' : 'Markers'}} )`;
        }}

        function loadDashboard(state) {{
            try {{
                if (heatmapLayer) map.removeLayer(heatmapLayer);
                if (clusterGroup) map.removeLayer(clusterGroup);
                heatmapLayer = null;
                clusterGroup = null;

                if (state.heatmapPoints.length > 0 && typeof L.heatLayer !== 'undefined') {{
                    heatmapLayer = L.heatLayer(state.heatmapPoints, {{
                        radius: 35,
                        blur: 25,
                        max: state.maxIntensity,
                        minOpacity: 0.1,
                        gradient: {{
                            0.1: '#00f9ff',
                            0.3: '#4a5fff',
                            0.6: '#8a2be2',
                            0.8: '#ff0099',
                            1.0: '#ffffff'
                        }}
                    }});
                }}
                if (state.peers.length > 0 && typeof L.markerClusterGroup !== 'undefined') {{
                    clusterGroup = buildClusterGroup(state.peers);
                }}

                const banner = document.getElementById('error-banner');
                banner.textContent = state.error ? 'Error: ' + state.error : '';
                banner.classList.toggle('hidden', !state.error);

                renderAnalytics(state.statistics);
                updateLayers();
                console.log('Loaded', state.peers.length, 'peers and', state.heatmapPoints.length, 'heatmap points');
            }} catch(error) {{
                console.error('Error processing dashboard data:', error);
            }}
        }}

        document.getElementById('analytics-toggle').addEventListener('click', function() {{
            const panel = document.getElementById('analytics-panel');
            const hidden = panel.classList.toggle('hidden');
            this.textContent = hidden ? 'Show Analytics' : 'Hide Analytics';
        }});

        map.on('zoomend', updateLayers);

        loadDashboard(initialState);

        if (window.location.protocol.startsWith('http') && typeof EventSource !== 'undefined') {{
            const events = new EventSource('/events');
            events.onmessage = function(event) {{
                const message = JSON.parse(event.data);
                if (message.type !== 'file_changed') return;
                fetch('{DASHBOARD_JSON}?t=' + new Date().getTime())
                    .then(response => {{
                        if (!response.ok) throw new Error('Network response was not ok');
                        return response.json();
                    }})
                    .then(loadDashboard)
                    .catch(error => console.log('Keeping current data:', error.message));
            }};
        }}

        setTimeout(function() {{
            map.invalidateSize();
        }}, 100);
    </script>
</body>
</html>
"""


def create_dashboard(state: Dict, output_dir: str = DEFAULT_OUTPUT_DIR) -> str:
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    export_dashboard_json(state, str(output_path / DASHBOARD_JSON))

    output_file = output_path / DASHBOARD_HTML
    with open(output_file, 'w', encoding='utf-8') as f:
        f.write(render_dashboard_html(state))

    logger.info(f"Dashboard saved to {output_file}")
    return str(output_file)
