"""Explicit failure values returned by store, clock and runner operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ErrorKind = Literal["validation", "io", "device", "invariant"]


@dataclass
class CoreError:
    """Represents an expected failure (never raised, always returned)."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return self.message


def validation_error(message: str) -> CoreError:
    return CoreError(kind="validation", message=message)


def io_error(message: str) -> CoreError:
    return CoreError(kind="io", message=message)


def device_error(message: str) -> CoreError:
    return CoreError(kind="device", message=message)


def invariant_error(message: str) -> CoreError:
    return CoreError(kind="invariant", message=message)
