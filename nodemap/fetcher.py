import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from nodemap.config import BITNODES_API_URL
from nodemap.errors import FetchError, ParseError, SchemaError, UnknownError

logger = logging.getLogger(__name__)


class SnapshotFetcher:
    def __init__(self, url: str = BITNODES_API_URL, session: Optional[aiohttp.ClientSession] = None):
        self.url = url
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    async def fetch_nodes(self) -> Dict[str, Any]:
        if not self.session:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

        logger.info(f"Fetching snapshot from {self.url}")

        try:
            async with self.session.get(self.url) as response:
                if not 200 <= response.status < 300:
                    raise FetchError(response.status, response.reason)
                body = await response.read()
        except asyncio.TimeoutError as e:
            raise UnknownError(f"Timed out fetching {self.url}") from e
        except aiohttp.ClientError as e:
            raise UnknownError(f"Request to {self.url} failed: {e}") from e

        try:
            data = json.loads(body)
        except (UnicodeDecodeError, ValueError) as e:
            raise ParseError(f"Malformed JSON in snapshot response: {e}") from e

        nodes = data.get('nodes') if isinstance(data, dict) else None
        if not isinstance(nodes, dict):
            raise SchemaError()

        logger.info(f"Snapshot contains {len(nodes)} raw node entries")
        return nodes
