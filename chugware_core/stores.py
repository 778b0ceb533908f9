"""Participant and result collections persisted as JSON arrays.

Both stores keep their records in memory and write the whole collection back
on save(). Every accessor hands out copies, so nothing a caller does with a
returned record can change what the store holds.

Failures are returned as CoreError values:
- validation: empty/oversized/duplicate names, bad time text, unknown
  status or discipline, frozen results
- invariant: operations naming a participant or result that does not exist
- io: unreadable or malformed files, failed writes (path included)
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import ValidationError

from . import timecodec
from .config import MAX_PARTICIPANTS, MAX_STRING_LENGTH
from .errors import CoreError, invariant_error, io_error, validation_error
from .types import DISCIPLINES, STATUS_DISQUALIFIED, STATUSES, TRY_FIELDS
from .validation import Participant, Result

logger = logging.getLogger(__name__)


def read_json_list(path: Path) -> Tuple[List[dict], Optional[CoreError]]:
    """Read a JSON array of objects; a missing file is an empty list."""
    if not path.exists():
        return [], None
    try:
        data = json.loads(path.read_text(encoding="utf-8") or "[]")
    except (OSError, ValueError) as e:
        return [], io_error(f"error reading file {path}: {e}")
    if not isinstance(data, list):
        return [], io_error(f"error parsing JSON file {path}: expected an array")
    return data, None


def write_json_list(path: Path, rows: List[dict]) -> Optional[CoreError]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError as e:
        return io_error(f"error writing file {path}: {e}")
    return None


def _is_blank(value: str) -> bool:
    return not value or not value.strip()


def _text_ok(value: str) -> bool:
    return 0 < len(value) <= MAX_STRING_LENGTH


class ParticipantStore:
    def __init__(self, path: str | Path | None = None):
        self._participants: List[Participant] = []
        self._path: Optional[Path] = Path(path) if path else None

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def set_path(self, path: str | Path) -> None:
        """Set the file path without loading from disk."""
        self._path = Path(path)

    def load(self, path: str | Path) -> Optional[CoreError]:
        self._path = Path(path)
        rows, err = read_json_list(self._path)
        if err is not None:
            return io_error(f"error loading participants: {err}")
        try:
            loaded = [Participant.model_validate(row) for row in rows]
        except ValidationError as e:
            return io_error(f"error loading participants from {self._path}: {e}")
        self._participants = loaded
        logger.debug(f"Loaded {len(loaded)} participants from {self._path}")
        return None

    def save(self) -> Optional[CoreError]:
        if self._path is None:
            return io_error("no file path set")
        return write_json_list(self._path, [p.to_row() for p in self._participants])

    def _index_of(self, name: str) -> Optional[int]:
        for i, p in enumerate(self._participants):
            if p.name == name:
                return i
        return None

    @staticmethod
    def _check(participant: Participant) -> Optional[CoreError]:
        if _is_blank(participant.name):
            return validation_error("participant name cannot be empty")
        if not (
            _text_ok(participant.name)
            and len(participant.program) <= MAX_STRING_LENGTH
            and len(participant.team) <= MAX_STRING_LENGTH
        ):
            return validation_error("participant data exceeds maximum length")
        return None

    def add(self, participant: Participant) -> Optional[CoreError]:
        err = self._check(participant)
        if err is not None:
            return err
        if self._index_of(participant.name) is not None:
            return validation_error(f"participant with name '{participant.name}' already exists")
        if len(self._participants) >= MAX_PARTICIPANTS:
            return validation_error(f"maximum number of participants ({MAX_PARTICIPANTS}) reached")
        self._participants.append(participant.model_copy())
        return None

    def update(self, name: str, participant: Participant) -> Optional[CoreError]:
        """Administrative edit: replace `name` with `participant` in place."""
        idx = self._index_of(name)
        if idx is None:
            return invariant_error(f"participant '{name}' not found")
        err = self._check(participant)
        if err is not None:
            return err
        if participant.name != name and self._index_of(participant.name) is not None:
            return validation_error(f"participant with name '{participant.name}' already exists")
        self._participants[idx] = participant.model_copy()
        return None

    def remove(self, name: str) -> Optional[CoreError]:
        idx = self._index_of(name)
        if idx is None:
            return invariant_error(f"participant '{name}' not found")
        del self._participants[idx]
        return None

    def get(self, name: str) -> Optional[Participant]:
        idx = self._index_of(name)
        return None if idx is None else self._participants[idx].model_copy()

    def list(self) -> List[Participant]:
        return [p.model_copy() for p in self._participants]

    def decrement_tries(self, name: str, discipline: str) -> Optional[CoreError]:
        """Use up one attempt (floor 0). Call save() to persist."""
        idx = self._index_of(name)
        if idx is None:
            return invariant_error(f"participant '{name}' not found")
        field = TRY_FIELDS.get(discipline)
        if field is None:
            # Other disciplines don't have try counts
            return None
        participant = self._participants[idx]
        try:
            tries = int(getattr(participant, field).strip())
        except ValueError:
            tries = 0
        if tries > 0:
            setattr(participant, field, str(tries - 1))
        return None

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._index_of(name) is not None


class ResultStore:
    def __init__(self, path: str | Path | None = None):
        self._results: List[Result] = []
        self._path: Optional[Path] = Path(path) if path else None

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def set_path(self, path: str | Path) -> None:
        """Set the file path without loading from disk."""
        self._path = Path(path)

    def load(self, path: str | Path) -> Optional[CoreError]:
        self._path = Path(path)
        rows, err = read_json_list(self._path)
        if err is not None:
            return io_error(f"error loading results: {err}")
        try:
            loaded = [Result.model_validate(row) for row in rows]
        except ValidationError as e:
            return io_error(f"error loading results from {self._path}: {e}")
        self._results = loaded
        logger.debug(f"Loaded {len(loaded)} results from {self._path}")
        return None

    def save(self) -> Optional[CoreError]:
        if self._path is None:
            return io_error("no file path set")
        return write_json_list(self._path, [r.to_row() for r in self._results])

    @staticmethod
    def _prepare(result: Result) -> Tuple[Optional[Result], Optional[CoreError]]:
        """Validate and recompute `time`; the caller's `time` is never kept."""
        if _is_blank(result.name) or _is_blank(result.discipline):
            return None, validation_error("name and discipline are required")
        if result.discipline not in DISCIPLINES:
            return None, validation_error(f"unknown discipline: {result.discipline}")
        if result.status not in STATUSES:
            return None, validation_error(f"status must be one of {list(STATUSES)}, got {result.status!r}")
        prepared = result.model_copy()
        for field, label in (("base_time", "base time"), ("additional_time", "additional time")):
            raw = getattr(prepared, field).strip()
            if not raw:
                setattr(prepared, field, "")
                continue
            normalized = timecodec.normalize(raw)
            if normalized == timecodec.INVALID:
                return None, validation_error(f"invalid {label} format: {raw}")
            setattr(prepared, field, normalized)
        if prepared.status == STATUS_DISQUALIFIED:
            prepared.time = timecodec.NAN
        else:
            prepared.time = timecodec.add(prepared.base_time, prepared.additional_time)
        return prepared, None

    def add(self, result: Result) -> Optional[CoreError]:
        prepared, err = self._prepare(result)
        if err is not None:
            return err
        self._results.append(prepared)
        return None

    def update_last(self, result: Result) -> Optional[CoreError]:
        """Replace the most recent result for (name, discipline).

        A Disqualified entry is frozen and is never overwritten.
        """
        prepared, err = self._prepare(result)
        if err is not None:
            return err
        for i in range(len(self._results) - 1, -1, -1):
            existing = self._results[i]
            if existing.name == prepared.name and existing.discipline == prepared.discipline:
                if existing.status == STATUS_DISQUALIFIED:
                    return validation_error(
                        f"{prepared.name} is already disqualified in {prepared.discipline} "
                        "and cannot be overwritten"
                    )
                self._results[i] = prepared
                return None
        return invariant_error(
            f"no result found to update for {prepared.name} in {prepared.discipline}"
        )

    def list_all(self) -> List[Result]:
        return [r.model_copy() for r in self._results]

    def list_by_discipline(self, discipline: str) -> List[Result]:
        return [r.model_copy() for r in self._results if r.discipline == discipline]

    def list_by_participant(self, name: str) -> List[Result]:
        return [r.model_copy() for r in self._results if r.name == name]

    def __len__(self) -> int:
        return len(self._results)
