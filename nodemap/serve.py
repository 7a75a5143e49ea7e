#!/usr/bin/env python3

import argparse
import functools
import http.server
import logging
import queue
import socket
import socketserver
import sys
import threading
import time
import webbrowser
from pathlib import Path
from typing import List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from nodemap.config import DASHBOARD_HTML, DASHBOARD_JSON, DEFAULT_OUTPUT_DIR, DEFAULT_PORT

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30


def find_available_port(start_port: int = DEFAULT_PORT, max_attempts: int = 10) -> Optional[int]:
    for port in range(start_port, start_port + max_attempts):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(('', port))
                return port
        except OSError:
            continue
    return None


class EventBroadcaster:
    """Fans file-change notifications out to every connected SSE client."""

    def __init__(self):
        self._lock = threading.Lock()
        self._clients: List[queue.Queue] = []

    def subscribe(self) -> queue.Queue:
        client: queue.Queue = queue.Queue()
        with self._lock:
            self._clients.append(client)
        return client

    def unsubscribe(self, client: queue.Queue):
        with self._lock:
            if client in self._clients:
                self._clients.remove(client)

    def publish(self, event_type: str, timestamp: float):
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            client.put((event_type, timestamp))

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)


class DashboardFileHandler(FileSystemEventHandler):

    def __init__(self, json_file: Path, broadcaster: EventBroadcaster):
        super().__init__()
        self.json_file = json_file
        self.broadcaster = broadcaster

    def _notify(self, path):
        if Path(path).resolve() == self.json_file.resolve():
            self.broadcaster.publish('file_changed', time.time())
            logger.info(f"Detected change in {self.json_file.name}")

    def on_modified(self, event):
        if not event.is_directory:
            self._notify(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._notify(event.dest_path)


class DashboardRequestHandler(http.server.SimpleHTTPRequestHandler):

    def __init__(self, *args, broadcaster: EventBroadcaster, **kwargs):
        self.broadcaster = broadcaster
        super().__init__(*args, **kwargs)

    def end_headers(self):
        self.send_header('Access-Control-Allow-Origin', '*')
        self.send_header('Access-Control-Allow-Methods', 'GET, OPTIONS')
        self.send_header('Access-Control-Allow-Headers', 'Content-Type')
        self.send_header('Cache-Control', 'no-cache, no-store, must-revalidate')
        self.send_header('Pragma', 'no-cache')
        self.send_header('Expires', '0')
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self):
        self.send_response(200)
        self.end_headers()

    def do_GET(self):
        if self.path != '/events':
            super().do_GET()
            return

        self.send_response(200)
        self.send_header('Content-Type', 'text/event-stream')
        self.send_header('Connection', 'keep-alive')
        self.end_headers()

        client = self.broadcaster.subscribe()
        try:
            self.wfile.write(b'data: {"type": "connected"}\n\n')
            self.wfile.flush()

            last_write = time.time()
            while True:
                try:
                    event_type, timestamp = client.get(timeout=1)
                    self.wfile.write(f'data: {{"type": "{event_type}", "timestamp": {timestamp}}}\n\n'.encode())
                    self.wfile.flush()
                    last_write = time.time()
                except queue.Empty:
                    if time.time() - last_write > KEEPALIVE_SECONDS:
                        self.wfile.write(b': keepalive\n\n')
                        self.wfile.flush()
                        last_write = time.time()
        except (BrokenPipeError, ConnectionResetError, OSError):
            pass
        finally:
            self.broadcaster.unsubscribe(client)


class ThreadingServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True


def start_file_watcher(directory: Path, broadcaster: EventBroadcaster) -> Observer:
    handler = DashboardFileHandler(directory / DASHBOARD_JSON, broadcaster)
    observer = Observer()
    observer.schedule(handler, path=str(directory), recursive=False)
    observer.start()
    logger.info(f"Watching {DASHBOARD_JSON} in {directory} for changes")
    return observer


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description='Serve the Bitcoin node map with live reload')
    parser.add_argument(
        '--directory',
        type=str,
        default=DEFAULT_OUTPUT_DIR,
        help=f'Folder holding {DASHBOARD_HTML} and {DASHBOARD_JSON} (default: {DEFAULT_OUTPUT_DIR})'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=DEFAULT_PORT,
        help=f'First port to try (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--no-browser',
        action='store_true',
        help='Do not open the map in a browser'
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    directory = Path(args.directory).resolve()
    if not (directory / DASHBOARD_HTML).exists():
        logger.error(f"{DASHBOARD_HTML} not found in {directory}; run `nodemap` first")
        sys.exit(1)

    port = find_available_port(args.port)
    if port is None:
        logger.error(f"Could not find an available port starting from {args.port}")
        sys.exit(1)
    if port != args.port:
        logger.warning(f"Port {args.port} is in use, using port {port} instead")

    broadcaster = EventBroadcaster()
    observer = start_file_watcher(directory, broadcaster)
    handler = functools.partial(
        DashboardRequestHandler,
        directory=str(directory),
        broadcaster=broadcaster,
    )

    try:
        with ThreadingServer(("", port), handler) as httpd:
            url = f"http://localhost:{port}/{DASHBOARD_HTML}"
            logger.info("=" * 60)
            logger.info(f"Bitcoin Node Map running at {url}")
            logger.info(f"Serving files from {directory}")
            logger.info("Press Ctrl+C to stop the server")
            logger.info("=" * 60)

            if not args.no_browser:
                webbrowser.open(url)
            httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Stopping server...")
    except OSError as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
    finally:
        observer.stop()
        observer.join()


if __name__ == "__main__":
    main()
