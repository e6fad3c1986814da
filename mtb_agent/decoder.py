"""
Decodes a getCommands.php response body into a PollResult.

The server's JSON is inconsistent (nullable fields, key casing, string ids,
its own timestamp format), so decoding is two-tier: a strict pass over the
documented keys, then a lenient pass. Nothing in here raises; every failure
comes back as ``PollResult.failure``.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import DecodeError
from .models import RECEIVED_AT_FORMAT, Command, DynamicValue, PollResult, Status

logger = logging.getLogger(__name__)

NO_COMMANDS_MARKER = "no commands found"

# lenient key aliases, compared after lowercasing and dropping "_"
_LENIENT_KEYS = {
    "command": "name",
    "name": "name",
    "parameters": "parameters",
    "params": "parameters",
    "id": "id",
    "response": "response",
    "status": "status",
    "computerid": "computer_id",
    "receivedat": "received_at",
}


def _format_error(envelope: Dict[str, Any], computer_id: str) -> str:
    error = envelope.get("error")
    code = envelope.get("code")
    error_text = str(error) if error is not None else "Unknown error"
    code_text = str(code) if code is not None else "No response code found"
    return f"Error when getting commands: {error_text}, response code: {code_text}, computerId: {computer_id}"


def _parse_error_envelope(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if isinstance(data, dict) and "error" in data:
        return data
    return None


def _wrap_parameters(raw: Any) -> Optional[Dict[str, DynamicValue]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        # double-encoded by the server
        try:
            raw = json.loads(raw) if raw.strip() else None
        except ValueError:
            raise DecodeError(f"parameters is not a JSON object: {raw!r}")
        if raw is None:
            return None
    if isinstance(raw, list) and not raw:
        # PHP encodes an empty associative array as []
        return {}
    if not isinstance(raw, dict):
        raise DecodeError(f"parameters is not a JSON object: {raw!r}")
    return {str(k): DynamicValue.wrap(v) for k, v in raw.items()}


def _parse_received_at(raw: Any, strict: bool) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if strict:
        if not isinstance(raw, str):
            raise DecodeError(f"received_at is not a string: {raw!r}")
        try:
            return datetime.fromisoformat(raw)
        except ValueError as e:
            raise DecodeError(f"bad received_at {raw!r}: {e}") from e
    # only metadata; a bad timestamp never costs the command
    text = str(raw).strip()
    for parse in (lambda: datetime.strptime(text, RECEIVED_AT_FORMAT), lambda: datetime.fromisoformat(text)):
        try:
            return parse()
        except ValueError:
            pass
    logger.warning("Ignoring unparseable received_at %r", raw)
    return None


def _parse_id(raw: Any, strict: bool) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise DecodeError(f"id is not an integer: {raw!r}")
    if isinstance(raw, int):
        return raw
    if not strict and isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    raise DecodeError(f"id is not an integer: {raw!r}")


def _build_command(fields: Dict[str, Any], strict: bool) -> Optional[Command]:
    name = fields.get("name")
    if not isinstance(name, str) or not name.strip():
        logger.warning("Command is missing required key \"command\"; skipping: %r", fields)
        return None
    computer_id = fields.get("computer_id")
    response = fields.get("response")
    return Command(
        name=name.strip(),
        parameters=_wrap_parameters(fields.get("parameters")),
        id=_parse_id(fields.get("id"), strict),
        response=str(response) if response is not None else None,
        status=Status.parse(fields.get("status")),
        computer_id=str(computer_id) if computer_id is not None else None,
        received_at=_parse_received_at(fields.get("received_at"), strict),
    )


def _strict_fields(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": entry.get("command"),
        "parameters": entry.get("parameters"),
        "id": entry.get("id"),
        "response": entry.get("response"),
        "status": entry.get("status"),
        "computer_id": entry.get("computer_id"),
        "received_at": entry.get("received_at"),
    }


def _lenient_fields(entry: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for key, value in entry.items():
        target = _LENIENT_KEYS.get(str(key).lower().replace("_", ""))
        if target and fields.get(target) is None:
            fields[target] = value
    return fields


def parse_commands(data: Any, strict: bool) -> List[Command]:
    """Turn a decoded JSON value into commands. Raises DecodeError."""
    if isinstance(data, dict):
        # a single command object instead of a list
        data = [data]
    if not isinstance(data, list):
        raise DecodeError(f"expected a JSON array of commands, got {type(data).__name__}")
    commands: List[Command] = []
    for entry in data:
        try:
            if not isinstance(entry, dict):
                raise DecodeError(f"command entry is not an object: {entry!r}")
            fields = _strict_fields(entry) if strict else _lenient_fields(entry)
            command = _build_command(fields, strict)
        except DecodeError as e:
            if strict:
                raise
            logger.warning("Skipping malformed command entry: %s", e)
            continue
        if command is not None:
            commands.append(command)
    return commands


def decode_poll_response(text: Optional[str], computer_id: str = "") -> PollResult:
    if text is None or not text.strip():
        return PollResult.failure("empty response")

    if NO_COMMANDS_MARKER in text.lower():
        logger.debug("No commands found for computerId %s", computer_id)
        return PollResult.ok()

    envelope = _parse_error_envelope(text)
    if envelope is not None:
        return PollResult.failure(_format_error(envelope, computer_id))

    logger.debug("Commands: %s", text)

    try:
        data = json.loads(text)
    except ValueError as e:
        logger.error("Failed to decode commands: %s", e)
        return PollResult.failure(f"Failed to decode commands: {text.strip()[:200]}")

    commands: List[Command] = []
    try:
        commands = parse_commands(data, strict=True)
    except DecodeError as e:
        logger.warning("Strict command decode failed (%s); retrying leniently", e)
        try:
            commands = parse_commands(data, strict=False)
        except DecodeError as e2:
            logger.error("Failed to decode commands: %s", e2)
            return PollResult.failure(f"Failed to decode commands: {e2}")

    if not commands:
        # strict decoding may have dropped entries whose keys are cased differently
        try:
            commands = parse_commands(data, strict=False)
        except DecodeError:
            commands = []

    if not commands:
        return PollResult.failure("Failed to convert commands: no valid commands in response")
    return PollResult.ok(commands)
