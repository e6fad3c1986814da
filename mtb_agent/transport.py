"""
HTTP transport to the command server.

Returns raw body text and leaves interpretation to the caller: the server
answers with HTTP 200 plus an error string in some cases and with a 4xx/5xx
plus a JSON error envelope in others, so status codes are never raised.
"""

import logging
import os
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .config import AgentContext
from .errors import NetworkError

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "file-upload"
UPLOAD_SUCCESS_MARKERS = ("upload-success", "uploaded successfully")


# HTTP SESSION
def build_session(retries: int = 0) -> requests.Session:
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.6,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=frozenset({"GET", "POST"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    sess = requests.Session()
    sess.mount("https://", adapter)
    sess.mount("http://", adapter)
    sess.headers.update({"User-Agent": f"mtb-agent/{__version__}"})
    return sess


class Transport:
    """GET/POST against the configured base URL."""

    def __init__(self, ctx: AgentContext, session: Optional[requests.Session] = None):
        self.ctx = ctx
        self.session = session or build_session(ctx.config.HTTP_RETRIES)

    @property
    def base_url(self) -> str:
        return self.ctx.version.version_url

    def url(self, path: str) -> str:
        return f"{self.base_url}{path.lstrip('/')}"

    def fetch(self, url: str) -> str:
        """GET `url` and return the body text. Raises NetworkError on transport failure."""
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(url, timeout=self.ctx.config.TOTAL_TIMEOUT)
        except requests.RequestException as e:
            raise NetworkError(f"GET {url} failed: {e}") from e
        if resp.status_code >= 400:
            logger.debug("GET %s returned HTTP %s", url, resp.status_code)
        return resp.text

    def upload_file(self, path: str) -> bool:
        """Upload one file to the server; True only if the server confirms it."""
        url = self.url("commands/uploadFile.php")
        name = os.path.basename(path)
        try:
            with open(path, "rb") as handle:
                files = {UPLOAD_FIELD: (name, handle, "image/png")}
                resp = self.session.post(url, files=files, timeout=self.ctx.config.TOTAL_TIMEOUT)
        except (OSError, requests.RequestException) as e:
            logger.error(f"Failed to upload {name}: {e}")
            return False

        body = resp.text.lower()
        if any(marker in body for marker in UPLOAD_SUCCESS_MARKERS):
            logger.info(f"Successfully uploaded {name}")
            return True
        logger.error(f"Upload of {name} rejected (HTTP {resp.status_code}): {resp.text.strip()[:200]}")
        return False
