"""Constants and read-only contest settings."""
from __future__ import annotations

import json
import logging
import re
from datetime import date
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import CoreError, io_error

logger = logging.getLogger(__name__)

# Constraints
MAX_STRING_LENGTH = 255
MAX_PARTICIPANTS = 200

# Default attempts per discipline at registration
BOTTLE_TRIES = 3
HALF_TANKARD_TRIES = 2
FULL_TANKARD_TRIES = 1

# Keys
OFFICIAL_KEY = "Official"
UNOFFICIAL_KEY = "Unofficial"
NO_KEY = "No"

# External clock
DEFAULT_BAUD = 9600
LOG_CAPACITY = 2000
READ_TIMEOUT_S = 0.1
# Longest partial line kept while waiting for its terminator
MAX_LINE_BYTES = 4096

# Internal clock refresh period (display only)
TICK_INTERVAL_S = 0.01

ClockMode = Literal["internal", "external"]

_FOLDER_RE = re.compile(r"^(.+)_(\d{4}-\d{2}-\d{2})_(Official|Unofficial)$")


class ContestSettings(BaseModel):
    """Settings a host application hands to the core.

    Field names match the settings file written by the desktop front end, so
    an existing file can be read as-is. Unknown keys are ignored.
    """

    folder_path: str = ""
    folder_path_contest_name_and_date: str = ""
    participant_file: str = ""
    result_file: str = ""
    external_clock_port: str = ""
    external_clock_baud: int = Field(DEFAULT_BAUD, ge=0, le=4_000_000)
    clock_mode: ClockMode = "internal"

    model_config = ConfigDict(extra="ignore")

    @field_validator("external_clock_baud", mode="before")
    @classmethod
    def default_baud(cls, v):
        # 0 / missing means "not configured yet"
        if v in (None, "", 0):
            return DEFAULT_BAUD
        return v


def load_settings(path: str | Path) -> Tuple[ContestSettings, Optional[CoreError]]:
    """Read settings from a JSON file.

    A missing file yields defaults and no error; an unreadable or malformed
    file yields defaults plus an ``io`` error naming the path.
    """
    settings_path = Path(path)
    if not settings_path.exists():
        logger.debug(f"No settings file at {settings_path}, using defaults")
        return ContestSettings(), None
    try:
        raw = settings_path.read_text(encoding="utf-8")
        return ContestSettings.model_validate(json.loads(raw)), None
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Could not load settings from {settings_path}: {e}")
        return ContestSettings(), io_error(f"error loading settings {settings_path}: {e}")


def contest_folder_name(display_name: str, contest_date: date | str, official: bool = True) -> str:
    """Build ``<DisplayName>_<YYYY-MM-DD>_<Official|Unofficial>``.

    Examples:
        - ("Spring Chug", date(2024, 4, 30)) → "Spring_Chug_2024-04-30_Official"
    """
    if isinstance(contest_date, date):
        contest_date = contest_date.isoformat()
    key = OFFICIAL_KEY if official else UNOFFICIAL_KEY
    return f"{display_name.strip().replace(' ', '_')}_{contest_date}_{key}"


def parse_contest_folder_name(folder_name: str) -> Optional[Tuple[str, str, bool]]:
    """Inverse of contest_folder_name: (display name, date, official) or None."""
    m = _FOLDER_RE.match(folder_name)
    if not m:
        return None
    return m.group(1).replace("_", " "), m.group(2), m.group(3) == OFFICIAL_KEY
