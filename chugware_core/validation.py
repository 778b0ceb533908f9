"""
Record models and command validation using Pydantic v2
Validates participant/result records and runner commands
"""

import logging
import re
from typing import Literal, Optional, Self, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .config import BOTTLE_TRIES, FULL_TANKARD_TRIES, HALF_TANKARD_TRIES, MAX_STRING_LENGTH
from .errors import CoreError, validation_error
from .types import DISCIPLINES, STATUSES, TRY_FIELDS, ParticipantRow, ResultRow

logger = logging.getLogger(__name__)

DEFAULT_TRIES_CODE = f"{BOTTLE_TRIES}{HALF_TANKARD_TRIES}{FULL_TANKARD_TRIES}"

# ==================== VALIDATOR FUNCTIONS ====================


def _coerce_text(v):
    """JSON files written by hand sometimes carry numbers instead of strings."""
    if v is None:
        return ""
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, (int, float)):
        return str(v)
    return v


class Participant(BaseModel):
    """A registered contestant; try counters are decimal strings."""

    name: str = ""
    program: str = ""
    team: str = ""
    bottle: str = ""
    half_tankard: str = ""
    full_tankard: str = ""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_text(cls, v):
        return _coerce_text(v)

    def tries_for(self, discipline: str) -> Optional[str]:
        """Raw counter for a discipline, or None for disciplines without one."""
        field = TRY_FIELDS.get(discipline)
        if field is None:
            return None
        return getattr(self, field)

    def to_row(self) -> ParticipantRow:
        return ParticipantRow(**self.model_dump())


class Result(BaseModel):
    """One timed attempt of one participant in one discipline."""

    name: str = ""
    discipline: str = ""
    time: str = ""
    base_time: str = ""
    additional_time: str = ""
    status: str = ""
    comment: str = ""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_text(cls, v):
        return _coerce_text(v)

    def to_row(self) -> ResultRow:
        return ResultRow(**self.model_dump())


class RegistrationForm(BaseModel):
    """Participant registration entry: name, program, team and a tries code.

    The tries code is three digits, one per counted discipline in the order
    Bottle, Half Tankard, Full Tankard (e.g. "321").
    """

    name: str = Field(..., min_length=1, max_length=MAX_STRING_LENGTH)
    program: str = Field("", max_length=MAX_STRING_LENGTH)
    team: str = Field("", max_length=MAX_STRING_LENGTH)
    tries: str = Field(DEFAULT_TRIES_CODE, pattern=r"^\d{3}$")

    @field_validator("name", "program", "team", "tries", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return InputSanitizer.clean_text(v)
        return v

    def to_participant(self) -> Participant:
        return Participant(
            name=self.name,
            program=self.program or "N/A",
            team=self.team or "N/A",
            bottle=self.tries[0],
            half_tankard=self.tries[1],
            full_tankard=self.tries[2],
        )


def participant_from_form(
    name: str, program: str, team: str, tries: str = DEFAULT_TRIES_CODE
) -> Tuple[Optional[Participant], Optional[CoreError]]:
    """Build a Participant from registration fields, or report why not."""
    try:
        form = RegistrationForm(name=name, program=program, team=team, tries=tries)
    except ValidationError as e:
        first = e.errors()[0]
        field = first["loc"][0] if first.get("loc") else "form"
        if field == "tries":
            return None, validation_error("disciplines must be 3 digits (e.g., 322)")
        if field == "name" and first.get("type") == "string_too_short":
            return None, validation_error("participant name is required")
        return None, validation_error(f"invalid {field}: {first.get('msg')}")
    return form.to_participant(), None


_COMMAND_TYPES = {
    "SET_DISCIPLINE",
    "SET_CLOCK_MODE",
    "ENQUEUE",
    "LOAD_NEXT",
    "LOAD_SELECTED",
    "READY_CHECK",
    "START_TIMER",
    "STOP_TIMER",
    "SET_FORM",
    "CALCULATE_TIME",
    "COMMIT",
    "COMMIT_BOTTLE",
    "SKIP",
    "CLEAR_SKIPPED",
    "RESET",
}


class ValidatedCmd(BaseModel):
    """Runner command with structural validation"""

    type: str = Field(..., min_length=1, max_length=50, description="Command type")

    name: Optional[str] = Field(
        None, min_length=1, max_length=MAX_STRING_LENGTH, description="Participant name"
    )
    discipline: Optional[str] = Field(None, description="Discipline name")
    status: Optional[str] = Field(None, description="Result status")
    comment: Optional[str] = Field(None, max_length=1000, description="Free-text comment")

    # Result form fields
    time: Optional[str] = Field(None, max_length=32, description="Explicit final time")
    base_time: Optional[str] = Field(None, max_length=32, description="Measured time")
    additional_time: Optional[str] = Field(None, max_length=32, description="Penalty time")

    # COMMIT_BOTTLE
    choice: Optional[Literal["penalty", "clean", "overflow"]] = None

    # SET_CLOCK_MODE
    mode: Optional[Literal["internal", "external"]] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate command type is one of allowed types"""
        if v not in _COMMAND_TYPES:
            raise ValueError(f"type must be one of {sorted(_COMMAND_TYPES)}, got {v}")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = InputSanitizer.clean_text(v)
        if len(v) == 0:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("discipline")
    @classmethod
    def validate_discipline(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if v not in DISCIPLINES:
            raise ValueError(f"discipline must be one of {list(DISCIPLINES)}, got {v}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if v not in STATUSES:
            raise ValueError(f"status must be one of {list(STATUSES)}, got {v}")
        return v

    @field_validator("time", "base_time", "additional_time", "comment")
    @classmethod
    def strip_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return InputSanitizer.clean_text(v)

    @model_validator(mode="after")
    def validate_command_fields(self) -> Self:
        """Validate required fields based on command type"""
        cmd_type = self.type

        if cmd_type in ("ENQUEUE", "LOAD_SELECTED"):
            if self.name is None:
                raise ValueError(f"{cmd_type} requires name")

        elif cmd_type == "SET_DISCIPLINE":
            if self.discipline is None:
                raise ValueError("SET_DISCIPLINE requires discipline")

        elif cmd_type == "COMMIT":
            if self.status is None:
                raise ValueError("COMMIT requires status")

        elif cmd_type == "COMMIT_BOTTLE":
            if self.choice is None:
                raise ValueError("COMMIT_BOTTLE requires choice")

        elif cmd_type == "SET_CLOCK_MODE":
            if self.mode is None:
                raise ValueError("SET_CLOCK_MODE requires mode")

        return self

    model_config = ConfigDict(extra="allow")


class InputSanitizer:
    """Utility class for input sanitization"""

    _CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

    @staticmethod
    def clean_text(value: str) -> str:
        """Strip whitespace and control characters without truncating"""
        if not isinstance(value, str):
            value = str(value)
        return InputSanitizer._CONTROL_CHARS.sub("", value).strip()

    @staticmethod
    def sanitize_string(value: str, max_length: int = MAX_STRING_LENGTH) -> str:
        """Clean and limit length (for free text such as comments)"""
        return InputSanitizer.clean_text(value)[:max_length]

    @staticmethod
    def validate_and_sanitize_cmd(cmd_dict: dict) -> ValidatedCmd:
        """
        Validate and sanitize command dictionary

        Returns:
            ValidatedCmd: Validated command object

        Raises:
            ValueError: If validation fails
        """
        try:
            return ValidatedCmd(**cmd_dict)
        except ValidationError as e:
            logger.warning(f"Command validation failed: {e}")
            raise ValueError(f"Invalid command: {str(e)}")


# ==================== EXPORT ====================

__all__ = [
    "Participant",
    "Result",
    "RegistrationForm",
    "participant_from_form",
    "ValidatedCmd",
    "InputSanitizer",
]
