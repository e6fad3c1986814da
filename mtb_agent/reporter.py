"""Reports a command's result and new status back to respond.php."""

import logging
from typing import Optional
from urllib.parse import urlencode

from .errors import NetworkError
from .models import Status
from .transport import Transport

logger = logging.getLogger(__name__)

RESPOND_ATTEMPTS = 3
FAILURE_MARKERS = ("error", "failed", "success = false")


class ResponseReporter:
    def __init__(self, transport: Transport, attempts: int = RESPOND_ATTEMPTS):
        self.transport = transport
        self.attempts = attempts

    def build_url(self, text: str, command_id: int, status: Optional[Status] = None) -> str:
        query = {"id": command_id, "response": text}
        if status is not None:
            query["status"] = status.value
        return f"{self.transport.url('commands/respond.php')}?{urlencode(query)}"

    def respond(self, text: str, command_id: Optional[int], status: Optional[Status] = None) -> bool:
        """Send `text` as the response for `command_id`. Returns True once the server confirms."""
        if command_id is None:
            logger.warning("Cannot respond to server when id is not specified")
            return False

        url = self.build_url(text, command_id, status)
        body = ""
        for attempt in range(1, self.attempts + 1):
            try:
                body = self.transport.fetch(url)
            except NetworkError as e:
                logger.warning(f"Respond attempt {attempt} for id {command_id} failed: {e}")
                continue

            lowered = body.lower()
            if any(marker in lowered for marker in FAILURE_MARKERS):
                logger.debug(f"Server rejected response for id {command_id} (attempt {attempt}/{self.attempts})")
                continue
            if "success" in lowered:
                logger.debug(f"Successfully responded to server: {body.strip()}")
                return True
            logger.warning(f"Unexpected response when responding to server: {body.strip()}")
            return False

        logger.error(f"Failed to respond to server for id {command_id} after {self.attempts} attempts: {body.strip()}")
        return False
