from .clock import ClockReading, ClockSource, ExternalSubscription, InternalTicker
from .config import ContestSettings, contest_folder_name, load_settings, parse_contest_folder_name
from .contest import BOTTLE_CHOICES, CommandOutcome, ContestRunner, HeatState, compute_eligible
from .errors import CoreError
from .external_clock import ExternalClockFeed, FeedState, LatestValue
from .ranking import DisciplineRanking, RankingRow, best_results, compute_discipline_ranking
from .stores import ParticipantStore, ResultStore
from .types import CommandPayload, HeatSnapshot, ParticipantRow, ResultForm, ResultRow
from .validation import InputSanitizer, Participant, RegistrationForm, Result, ValidatedCmd, participant_from_form

__all__ = [
    "ClockReading",
    "ClockSource",
    "ExternalSubscription",
    "InternalTicker",
    "ContestSettings",
    "contest_folder_name",
    "load_settings",
    "parse_contest_folder_name",
    "BOTTLE_CHOICES",
    "CommandOutcome",
    "ContestRunner",
    "HeatState",
    "compute_eligible",
    "CoreError",
    "ExternalClockFeed",
    "FeedState",
    "LatestValue",
    "DisciplineRanking",
    "RankingRow",
    "best_results",
    "compute_discipline_ranking",
    "ParticipantStore",
    "ResultStore",
    "CommandPayload",
    "HeatSnapshot",
    "ParticipantRow",
    "ResultForm",
    "ResultRow",
    "InputSanitizer",
    "Participant",
    "RegistrationForm",
    "Result",
    "ValidatedCmd",
    "participant_from_form",
]
