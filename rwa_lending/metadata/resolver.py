"""Token URI resolution into DisplayMetadata."""
from __future__ import annotations

import base64
import binascii
import json
import logging
import ssl
from typing import Any
from urllib.parse import unquote

import aiohttp
import certifi

from ..models import DisplayMetadata, MetadataSource

logger = logging.getLogger(__name__)

_BASE64_PREFIX = "data:application/json;base64,"
_PLAIN_PREFIX = "data:application/json,"


def parse_token_uri(uri: str) -> DisplayMetadata | None:
    """Decode an embedded ``data:`` URI.

    Returns ``None`` when the URI points somewhere remote and must be fetched,
    and absent metadata when an embedded document cannot be decoded.
    """
    if not uri:
        return DisplayMetadata.absent()

    try:
        if uri.startswith(_BASE64_PREFIX):
            raw = base64.b64decode(uri[len(_BASE64_PREFIX):], validate=False)
            document = json.loads(raw.decode("utf-8"))
        elif uri.startswith(_PLAIN_PREFIX):
            document = json.loads(unquote(uri[len(_PLAIN_PREFIX):]))
        else:
            return None
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.warning("Could not decode embedded token metadata: %s", e)
        return DisplayMetadata.absent(uri)

    if not isinstance(document, dict):
        logger.warning("Embedded token metadata is not a JSON object")
        return DisplayMetadata.absent(uri)
    return DisplayMetadata(source=MetadataSource.EMBEDDED, uri=uri, document=document)


def remote_url(uri: str, ipfs_gateway: str) -> str | None:
    """HTTP(S) URL to fetch for a remote token URI, or None if unsupported."""
    if uri.startswith(("http://", "https://")):
        return uri
    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return ipfs_gateway.rstrip("/") + "/" + path
    return None


class HttpMetadataResolver:
    """Resolve token URIs, fetching remote documents over HTTP(S).

    Failures never propagate: the position still renders with fallback
    display fields.
    """

    def __init__(
        self, ipfs_gateway: str = "https://ipfs.io/ipfs/", timeout: float = 10.0
    ) -> None:
        self.ipfs_gateway = ipfs_gateway
        self.timeout = timeout

    async def resolve(self, uri: str) -> DisplayMetadata:
        embedded = parse_token_uri(uri)
        if embedded is not None:
            return embedded

        url = remote_url(uri, self.ipfs_gateway)
        if url is None:
            logger.warning("Unsupported token URI scheme: %s", uri[:64])
            return DisplayMetadata.absent(uri)

        document = await self._fetch(url)
        return DisplayMetadata(source=MetadataSource.REMOTE, uri=uri, document=document)

    async def _fetch(self, url: str) -> dict[str, Any] | None:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        logger.warning(
                            "Metadata fetch from %s failed: HTTP %s", url, response.status
                        )
                        return None
                    data = await response.json(content_type=None)
        except Exception as e:
            logger.warning("Metadata fetch from %s failed: %s", url, e)
            return None

        if not isinstance(data, dict):
            logger.warning("Metadata at %s is not a JSON object", url)
            return None
        return data
