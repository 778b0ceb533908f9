"""Type definitions for persisted rows, heat state and commands."""
from __future__ import annotations

from typing import Dict, List, Optional, TypedDict

# Disciplines
DISCIPLINE_BOTTLE = "Bottle"
DISCIPLINE_HALF_TANKARD = "Half Tankard"
DISCIPLINE_FULL_TANKARD = "Full Tankard"
DISCIPLINE_BIER_STAPHETTE = "Bier Staphette"
DISCIPLINE_MEGA_MEDLEY = "Mega Medley"
DISCIPLINE_TEAM_CLASH = "Team Clash"

DISCIPLINES = (
    DISCIPLINE_BOTTLE,
    DISCIPLINE_HALF_TANKARD,
    DISCIPLINE_FULL_TANKARD,
    DISCIPLINE_BIER_STAPHETTE,
    DISCIPLINE_MEGA_MEDLEY,
    DISCIPLINE_TEAM_CLASH,
)

# Only these disciplines carry a per-participant attempt counter.
TRY_FIELDS: Dict[str, str] = {
    DISCIPLINE_BOTTLE: "bottle",
    DISCIPLINE_HALF_TANKARD: "half_tankard",
    DISCIPLINE_FULL_TANKARD: "full_tankard",
}

# Result status
STATUS_PASS = "Pass"
STATUS_DISQUALIFIED = "Disqualified"
STATUS_FAIL = "Fail"

STATUSES = (STATUS_PASS, STATUS_DISQUALIFIED, STATUS_FAIL)


class ParticipantRow(TypedDict):
    """One object of the participant JSON array (all values are strings)."""
    name: str
    program: str
    team: str
    bottle: str
    half_tankard: str
    full_tankard: str


class ResultRow(TypedDict):
    """One object of the result JSON array (all values are strings)."""
    name: str
    discipline: str
    time: str
    base_time: str
    additional_time: str
    status: str
    comment: str


class ResultForm(TypedDict):
    """Manual entry fields of the current heat."""
    time: str
    base_time: str
    additional_time: str
    comment: str
    locked_time: str


class HeatSnapshot(TypedDict, total=False):
    """
    Read-only view of the contest runner for a UI layer to render.

    Participants are plain row dicts, so mutating a snapshot never reaches
    the runner or the stores.
    """
    # 'idle' | 'loaded' | 'ready' | 'running' | 'stopped'
    state: str
    discipline: str
    clockMode: str  # 'internal' | 'external'

    currentChugger: Optional[ParticipantRow]
    queue: List[str]
    eligible: List[ParticipantRow]
    skipped: List[str]

    timerDisplay: str
    triesConsumed: bool
    form: ResultForm


class CommandPayload(TypedDict, total=False):
    """Command sent by a UI layer to ContestRunner.apply_command."""
    type: str
    name: str
    discipline: str
    status: str
    comment: str
    time: str
    base_time: str
    additional_time: str
    choice: str  # 'penalty' | 'clean' | 'overflow'
    mode: str  # 'internal' | 'external'
