"""
In-memory command model.

Everything the server sends is loosely typed JSON, so parameter values are
wrapped in DynamicValue and read through helpers that return None instead of
raising on a type mismatch.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

RECEIVED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"


class Status(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVING = "removing"

    @classmethod
    def parse(cls, raw: Any) -> "Status":
        """Map a wire value to a Status; unknown values become PENDING."""
        if isinstance(raw, str):
            try:
                return cls(raw.strip().lower())
            except ValueError:
                pass
        return cls.PENDING


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    NULL = "null"


@dataclass(frozen=True)
class DynamicValue:
    """One parameter value as received: string, number, bool or null."""

    kind: ValueKind
    value: Union[str, int, float, bool, None]

    @classmethod
    def wrap(cls, raw: Any) -> "DynamicValue":
        if raw is None:
            return cls(ValueKind.NULL, None)
        # bool first: bool is a subclass of int
        if isinstance(raw, bool):
            return cls(ValueKind.BOOL, raw)
        if isinstance(raw, (int, float)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        # nested objects/arrays are kept as their JSON text
        return cls(ValueKind.STRING, json.dumps(raw))

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def as_text(self) -> Optional[str]:
        if self.kind is ValueKind.NULL:
            return None
        if self.kind is ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind is ValueKind.NUMBER and isinstance(self.value, float) and self.value.is_integer():
            return str(int(self.value))
        return str(self.value)

    def as_int(self) -> Optional[int]:
        if self.kind is ValueKind.NUMBER:
            if isinstance(self.value, float) and not self.value.is_integer():
                return None
            return int(self.value)
        if self.kind is ValueKind.STRING:
            try:
                return int(str(self.value).strip(), 0)
            except ValueError:
                return None
        return None


@dataclass
class Command:
    """One unit of work for this computer. `name` is the only required field."""

    name: str
    parameters: Optional[Dict[str, DynamicValue]] = None
    id: Optional[int] = None
    response: Optional[str] = None
    status: Status = Status.PENDING
    computer_id: Optional[str] = None
    received_at: Optional[datetime] = None

    def param(self, key: str) -> Optional[DynamicValue]:
        if not self.parameters:
            return None
        return self.parameters.get(key)

    def text_param(self, key: str) -> Optional[str]:
        value = self.param(key)
        return value.as_text() if value is not None else None

    def int_param(self, key: str) -> Optional[int]:
        value = self.param(key)
        return value.as_int() if value is not None else None


@dataclass
class PollResult:
    success: bool
    error_message: Optional[str] = None
    commands: List[Command] = field(default_factory=list)

    def __post_init__(self):
        if not self.success:
            self.commands = []

    @classmethod
    def ok(cls, commands: Optional[List[Command]] = None) -> "PollResult":
        return cls(success=True, commands=list(commands or []))

    @classmethod
    def failure(cls, message: str) -> "PollResult":
        return cls(success=False, error_message=message)


@dataclass(frozen=True)
class UpdateManifest:
    latest_version: str
    file_list: List[str]


@dataclass(frozen=True)
class VersionInfo:
    version_string: str
    version_url: str
