"""Heat-by-heat contest runner (no UI, no globals).

This module implements the business logic of running chug heats: who is on
the clock, when the clock may start and stop, how a measurement becomes a
result, and when an attempt is used up.

Architecture:
- ContestRunner owns all mutable heat state and is driven from one thread
- Stores (participants/results) and the ClockSource are passed in explicitly
- Every operation returns a CommandOutcome: a snapshot of the heat plus an
  optional CoreError; expected failures are never raised
- apply_command() takes a plain command dict with a 'type' field, validates
  it with ValidatedCmd and dispatches to the matching operation, so a UI can
  stay a thin translator from gestures to commands

States:
- idle: nobody loaded
- loaded: a chugger is on deck (LOAD_NEXT / LOAD_SELECTED)
- ready: ready check done, START_TIMER permitted
- running: clock running
- stopped: clock stopped, base time filled in, waiting for COMMIT

Transitions:
- COMMIT / COMMIT_BOTTLE: stores the result and returns to idle
- SKIP: loaded chugger goes to the skipped set, back to idle
- RESET: any state back to idle, nothing persisted is touched

Attempts:
- stopping the clock with a measurement uses up one try (persisted at once)
- committing a result for a heat whose clock never produced a measurement
  uses up the try instead, so one heat never costs two tries
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from . import timecodec
from .clock import ClockSource
from .errors import CoreError, invariant_error, io_error, validation_error
from .stores import ParticipantStore, ResultStore
from .types import (
    DISCIPLINE_BOTTLE,
    DISCIPLINES,
    STATUS_DISQUALIFIED,
    STATUS_PASS,
    STATUSES,
    HeatSnapshot,
    ResultForm,
)
from .validation import InputSanitizer, Participant, Result

logger = logging.getLogger(__name__)

BOTTLE_CHOICES = ("penalty", "clean", "overflow")
OVERFLOW_COMMENT = "Overflow"
MAX_COMMENT_LENGTH = 1000


class HeatState(str, Enum):
    IDLE = "idle"
    LOADED = "loaded"
    READY = "ready"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class CommandOutcome:
    """Result of applying a runner command."""

    state: Dict[str, Any]
    cmd_payload: Dict[str, Any]
    snapshot_required: bool
    error: Optional[CoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Form:
    time: str = ""
    base_time: str = ""
    additional_time: str = ""
    comment: str = ""
    locked_time: str = ""


def tries_value(raw: str) -> int:
    """Numeric value of a try counter; non-numeric counts as 0."""
    try:
        return int(raw.strip())
    except ValueError:
        return 0


def compute_eligible(participants: List[Participant], discipline: str) -> List[Participant]:
    """Participants with tries left in `discipline`.

    Ordered by remaining tries descending so the next chugger loaded is the
    one with the most tries, with name as a tiebreaker. Disciplines without
    a counter have nobody eligible.
    """
    eligible: List[Participant] = []
    for p in participants:
        raw = p.tries_for(discipline)
        if raw is None:
            continue
        raw = raw.strip()
        if raw == "" or raw == "0":
            continue
        eligible.append(p)
    eligible.sort(key=lambda p: (-tries_value(p.tries_for(discipline) or ""), p.name))
    return eligible


class ContestRunner:
    def __init__(
        self,
        participants: ParticipantStore,
        results: ResultStore,
        clock: Optional[ClockSource] = None,
        discipline: str = DISCIPLINE_BOTTLE,
    ):
        self.participants = participants
        self.results = results
        self.clock = clock or ClockSource()
        self._discipline = discipline
        self._state = HeatState.IDLE
        self._current: Optional[Participant] = None
        self._queue: List[str] = []
        self._eligible: List[Participant] = []
        self._skipped: List[str] = []
        self._form = _Form()
        self._tries_consumed = False
        self.refresh_eligible()

    # ------------------------------------------------------------- accessors

    @property
    def state(self) -> HeatState:
        return self._state

    @property
    def discipline(self) -> str:
        return self._discipline

    @property
    def current(self) -> Optional[Participant]:
        return None if self._current is None else self._current.model_copy()

    def eligible(self) -> List[Participant]:
        return [p.model_copy() for p in self._eligible]

    def queue(self) -> List[str]:
        return list(self._queue)

    def skipped(self) -> List[str]:
        return list(self._skipped)

    def form(self) -> ResultForm:
        return ResultForm(**asdict(self._form))

    def refresh_eligible(self) -> None:
        self._eligible = compute_eligible(self.participants.list(), self._discipline)

    def snapshot(self) -> HeatSnapshot:
        return HeatSnapshot(
            state=self._state.value,
            discipline=self._discipline,
            clockMode=self.clock.mode,
            currentChugger=None if self._current is None else self._current.to_row(),
            queue=self.queue(),
            eligible=[p.to_row() for p in self._eligible],
            skipped=self.skipped(),
            timerDisplay=self.clock.display(),
            triesConsumed=self._tries_consumed,
            form=self.form(),
        )

    # --------------------------------------------------------------- helpers

    def _outcome(
        self,
        cmd_type: str,
        error: Optional[CoreError] = None,
        snapshot_required: bool = True,
        **extra: Any,
    ) -> CommandOutcome:
        payload: Dict[str, Any] = {"type": cmd_type, **extra}
        if error is not None:
            logger.warning(f"{cmd_type} rejected: {error.message}")
        return CommandOutcome(
            state=dict(self.snapshot()),
            cmd_payload=payload,
            snapshot_required=snapshot_required,
            error=error,
        )

    def _reject(self, cmd_type: str, error: CoreError, **extra: Any) -> CommandOutcome:
        return self._outcome(cmd_type, error=error, snapshot_required=False, **extra)

    def _clear_heat(self) -> None:
        self.clock.reset()
        self._form = _Form()
        self._current = None
        self._tries_consumed = False
        self._state = HeatState.IDLE

    def _load(self, participant: Participant) -> None:
        self.clock.reset()
        self._form = _Form()
        self._tries_consumed = False
        self._current = participant.model_copy()
        self._state = HeatState.LOADED
        logger.debug(f"Loaded {participant.name} for {self._discipline}")

    def _consume_try(self) -> Optional[CoreError]:
        """Use up one attempt for the current chugger and persist it."""
        assert self._current is not None
        name = self._current.name
        err = self.participants.decrement_tries(name, self._discipline)
        if err is not None:
            return err
        self._tries_consumed = True
        save_err = self.participants.save()
        refreshed = self.participants.get(name)
        if refreshed is not None:
            self._current = refreshed
        if save_err is not None:
            return io_error(f"error saving participant tries: {save_err}")
        return None

    # ----------------------------------------------------------- operations

    def set_discipline(self, discipline: str) -> CommandOutcome:
        if discipline not in DISCIPLINES:
            return self._reject("SET_DISCIPLINE", validation_error(f"unknown discipline: {discipline}"))
        if self._current is not None:
            return self._reject(
                "SET_DISCIPLINE",
                validation_error("cannot change discipline while a chugger is loaded"),
            )
        self._discipline = discipline
        self.refresh_eligible()
        return self._outcome("SET_DISCIPLINE", discipline=discipline)

    def set_clock_mode(self, mode: str) -> CommandOutcome:
        err = self.clock.set_mode(mode)  # type: ignore[arg-type]
        if err is not None:
            return self._reject("SET_CLOCK_MODE", err)
        return self._outcome("SET_CLOCK_MODE", mode=mode)

    def enqueue(self, name: str) -> CommandOutcome:
        participant = self.participants.get(name)
        if participant is None:
            return self._reject("ENQUEUE", invariant_error(f"participant '{name}' not found"))
        if name in self._queue:
            return self._reject("ENQUEUE", validation_error(f"{name} is already queued"))
        self._queue.append(participant.name)
        return self._outcome("ENQUEUE", name=name)

    def load_next(self) -> CommandOutcome:
        if self._current is not None:
            return self._reject(
                "LOAD_NEXT", validation_error("a chugger is already loaded - skip or reset first")
            )
        # The store may have been edited since the last heat.
        self.refresh_eligible()
        by_name = {p.name: p for p in self._eligible}
        participant: Optional[Participant] = None
        while self._queue and participant is None:
            name = self._queue.pop(0)
            participant = by_name.get(name)
            if participant is None:
                logger.info(f"Dropped {name} from the queue: not registered or no tries left in {self._discipline}")
        if participant is None:
            if not self._eligible:
                return self._reject("LOAD_NEXT", validation_error("no participants available"))
            # Skipped participants stay eligible but go last while others wait.
            waiting = [p for p in self._eligible if p.name not in self._skipped]
            participant = (waiting or self._eligible)[0]
        self._load(participant)
        return self._outcome("LOAD_NEXT", name=participant.name)

    def load_selected(self, name: str) -> CommandOutcome:
        if self._current is not None:
            return self._reject(
                "LOAD_SELECTED", validation_error("a chugger is already loaded - skip or reset first")
            )
        for participant in self._eligible:
            if participant.name == name:
                self._load(participant)
                return self._outcome("LOAD_SELECTED", name=name)
        return self._reject(
            "LOAD_SELECTED",
            validation_error(f"{name} is not in the participants list for {self._discipline}"),
        )

    def ready_check(self) -> CommandOutcome:
        if self._current is None:
            return self._reject("READY_CHECK", validation_error("no participant loaded"))
        if self._state not in (HeatState.LOADED, HeatState.READY):
            return self._reject("READY_CHECK", validation_error("the timer has already been started"))
        self._state = HeatState.READY
        return self._outcome("READY_CHECK", name=self._current.name)

    def start(self) -> CommandOutcome:
        if self._current is None:
            return self._reject("START_TIMER", validation_error("no participant loaded"))
        if self._state is HeatState.RUNNING:
            return self._reject("START_TIMER", validation_error("timer is already running"))
        if self._state is not HeatState.READY:
            return self._reject("START_TIMER", validation_error("ready check required before start"))
        err = self.clock.start()
        if err is not None:
            return self._reject("START_TIMER", err)
        self._state = HeatState.RUNNING
        logger.debug(f"Timer started for {self._current.name} ({self.clock.mode})")
        return self._outcome("START_TIMER", name=self._current.name)

    def stop(self) -> CommandOutcome:
        if self._state is HeatState.STOPPED:
            return self._outcome("STOP_TIMER", snapshot_required=False)
        if self._state is not HeatState.RUNNING:
            return self._reject("STOP_TIMER", validation_error("timer is not running"))
        assert self._current is not None

        reading = self.clock.stop()
        self._state = HeatState.STOPPED
        if reading.error is not None:
            return self._outcome("STOP_TIMER", error=reading.error)

        self._form.base_time = reading.text
        err = None
        if reading.measured and not self._tries_consumed:
            err = self._consume_try()
        logger.debug(f"Timer stopped for {self._current.name}: {reading.text}")
        return self._outcome("STOP_TIMER", error=err, base_time=reading.text)

    def set_form(
        self,
        time: Optional[str] = None,
        base_time: Optional[str] = None,
        additional_time: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> CommandOutcome:
        if self._current is None:
            return self._reject("SET_FORM", validation_error("no participant loaded"))
        if time is not None:
            time = time.strip()
            if self._form.locked_time and time != self._form.locked_time:
                return self._reject(
                    "SET_FORM", validation_error("time is locked after calculating the final time")
                )
            self._form.time = time
        if base_time is not None:
            self._form.base_time = base_time.strip()
        if additional_time is not None:
            self._form.additional_time = additional_time.strip()
        if comment is not None:
            self._form.comment = InputSanitizer.sanitize_string(comment, MAX_COMMENT_LENGTH)
        return self._outcome("SET_FORM", snapshot_required=False)

    def calculate_final_time(self) -> CommandOutcome:
        """Fill and lock the time field with base + additional."""
        if self._current is None:
            return self._reject("CALCULATE_TIME", validation_error("no participant loaded"))
        base = self._form.base_time.strip()
        additional = self._form.additional_time.strip()

        missing = [label for label, v in (("Base Time", base), ("Additional Time", additional)) if not v]
        if missing:
            return self._reject(
                "CALCULATE_TIME",
                validation_error(f"the following fields are required: {', '.join(missing)}"),
            )
        nan_fields = [
            label for label, v in (("Base Time", base), ("Additional Time", additional)) if timecodec.is_nan(v)
        ]
        if nan_fields:
            return self._reject(
                "CALCULATE_TIME",
                validation_error(f"NaN is not accepted in: {', '.join(nan_fields)}"),
            )
        norm_base = timecodec.normalize(base)
        if norm_base == timecodec.INVALID:
            return self._reject("CALCULATE_TIME", validation_error(f"Base Time has an invalid format: {base}"))
        norm_additional = timecodec.normalize(additional)
        if norm_additional == timecodec.INVALID:
            return self._reject(
                "CALCULATE_TIME", validation_error(f"Additional Time has an invalid format: {additional}")
            )

        total = timecodec.add(norm_base, norm_additional)
        self._form.time = total
        self._form.locked_time = total
        return self._outcome("CALCULATE_TIME", time=total)

    def _build_result(self, status: str) -> Tuple[Optional[Result], Optional[CoreError]]:
        """Turn the form into a Result.

        Final time priority:
            1. explicit time field
            2. base + additional
            3. nothing: only allowed for non-Pass statuses
        A NaN operand forces Disqualified.
        """
        assert self._current is not None
        explicit = self._form.time.strip()
        base = self._form.base_time.strip()
        additional = self._form.additional_time.strip()

        if explicit:
            final = timecodec.normalize(explicit)
            if final == timecodec.INVALID:
                return None, validation_error("invalid time format")
            # The stored time is always recomputed from the components, so an
            # explicit time that disagrees with them becomes the base itself.
            norm_base = timecodec.normalize(base) if base else ""
            norm_additional = timecodec.normalize(additional) if additional else ""
            components_ok = (
                norm_base not in ("", timecodec.INVALID) and norm_additional != timecodec.INVALID
            )
            if components_ok and timecodec.add(norm_base, norm_additional) == final:
                base_out, additional_out = norm_base, norm_additional
            else:
                base_out, additional_out = final, ""
        elif base:
            base_out = timecodec.normalize(base)
            if base_out == timecodec.INVALID:
                return None, validation_error(f"invalid base time format: {base}")
            additional_out = ""
            if additional:
                additional_out = timecodec.normalize(additional)
                if additional_out == timecodec.INVALID:
                    return None, validation_error(f"invalid additional time format: {additional}")
            final = timecodec.add(base_out, additional_out)
        elif status == STATUS_PASS:
            return None, validation_error("time is required: fill in Time or Base Time + Additional Time")
        else:
            base_out = additional_out = final = ""

        if final == timecodec.NAN:
            status = STATUS_DISQUALIFIED

        return (
            Result(
                name=self._current.name,
                discipline=self._discipline,
                time=final,
                base_time=base_out,
                additional_time=additional_out,
                status=status,
                comment=self._form.comment,
            ),
            None,
        )

    def _record(self, cmd_type: str, result: Result) -> CommandOutcome:
        """Store the result, settle the attempt and go back to idle."""
        err = self.results.add(result)
        if err is not None:
            return self._reject(cmd_type, CoreError(kind=err.kind, message=f"error adding result: {err}"))

        errors: List[CoreError] = []
        save_err = self.results.save()
        if save_err is not None:
            errors.append(io_error(f"error saving results: {save_err}"))
        if not self._tries_consumed:
            try_err = self._consume_try()
            if try_err is not None:
                errors.append(try_err)

        stored = self.results.list_by_participant(result.name)[-1]
        logger.info(f"Result for {stored.name} in {stored.discipline}: {stored.status} {stored.time}")
        self._clear_heat()
        self.refresh_eligible()
        return self._outcome(
            cmd_type,
            error=errors[0] if errors else None,
            result=stored.to_row(),
        )

    def commit(self, status: str, comment: Optional[str] = None) -> CommandOutcome:
        if self._current is None:
            return self._reject("COMMIT", validation_error("no participant loaded"))
        if self._state is HeatState.RUNNING:
            return self._reject("COMMIT", validation_error("stop the timer before saving a result"))
        if status not in STATUSES:
            return self._reject("COMMIT", validation_error(f"unknown status: {status}"))
        if comment is not None:
            self._form.comment = InputSanitizer.sanitize_string(comment, MAX_COMMENT_LENGTH)

        result, err = self._build_result(status)
        if err is not None:
            return self._reject("COMMIT", err)
        assert result is not None
        return self._record("COMMIT", result)

    def commit_bottle(
        self,
        choice: str,
        additional_time: str = "",
        requested_status: str = STATUS_PASS,
    ) -> CommandOutcome:
        """Bottle result entry from a single additional-time field.

        Choices:
            - penalty: base + additional, keeps requested_status
            - clean: additional forced to zero, Pass
            - overflow: Disqualified with comment "Overflow"
        """
        if self._current is None:
            return self._reject("COMMIT_BOTTLE", validation_error("no participant loaded"))
        if self._discipline != DISCIPLINE_BOTTLE:
            return self._reject(
                "COMMIT_BOTTLE", validation_error("bottle result entry is only available for Bottle")
            )
        if self._state is HeatState.RUNNING:
            return self._reject("COMMIT_BOTTLE", validation_error("stop the timer before saving a result"))
        if choice not in BOTTLE_CHOICES:
            return self._reject("COMMIT_BOTTLE", validation_error(f"unknown bottle choice: {choice}"))
        if requested_status not in STATUSES:
            return self._reject("COMMIT_BOTTLE", validation_error(f"unknown status: {requested_status}"))

        if choice == "clean":
            additional, status = "0", STATUS_PASS
        elif choice == "overflow":
            additional, status = additional_time.strip(), STATUS_DISQUALIFIED
        else:
            additional, status = additional_time.strip(), requested_status

        base = self._form.base_time.strip()
        norm_base = timecodec.normalize(base) if base else ""
        if norm_base == timecodec.INVALID:
            return self._reject("COMMIT_BOTTLE", validation_error(f"invalid base time format: {base}"))
        norm_additional = timecodec.normalize(additional) if additional else ""
        if norm_additional == timecodec.INVALID:
            return self._reject(
                "COMMIT_BOTTLE", validation_error(f"invalid additional time format: {additional}")
            )
        if not norm_base and status == STATUS_PASS:
            return self._reject("COMMIT_BOTTLE", validation_error("time is required: no base time measured"))

        final = timecodec.add(norm_base, norm_additional)
        if final == timecodec.NAN:
            status = STATUS_DISQUALIFIED
        comment = OVERFLOW_COMMENT if status == STATUS_DISQUALIFIED else self._form.comment

        self._form.additional_time = norm_additional
        result = Result(
            name=self._current.name,
            discipline=self._discipline,
            time=final,
            base_time=norm_base,
            additional_time=norm_additional,
            status=status,
            comment=comment,
        )
        return self._record("COMMIT_BOTTLE", result)

    def skip(self) -> CommandOutcome:
        if self._current is None:
            return self._reject("SKIP", validation_error("no participant loaded"))
        if self._state not in (HeatState.LOADED, HeatState.READY):
            return self._reject("SKIP", validation_error("cannot skip once the timer has started - reset instead"))
        name = self._current.name
        # Informational only: skipped participants keep their eligibility.
        if name not in self._skipped:
            self._skipped.append(name)
        self._clear_heat()
        self.refresh_eligible()
        logger.debug(f"Skipped {name}")
        return self._outcome("SKIP", name=name)

    def clear_skipped(self) -> CommandOutcome:
        if not self._skipped:
            return self._outcome("CLEAR_SKIPPED", snapshot_required=False)
        self._skipped.clear()
        self.refresh_eligible()
        return self._outcome("CLEAR_SKIPPED")

    def reset(self) -> CommandOutcome:
        self._clear_heat()
        return self._outcome("RESET")

    # -------------------------------------------------------------- commands

    def apply_command(self, cmd: Dict[str, Any]) -> CommandOutcome:
        """Validate a command dict and dispatch it.

        Args:
            cmd: Command dict with 'type' field and command-specific params

        Returns:
            CommandOutcome with the heat snapshot, enriched payload and error
        """
        try:
            validated = InputSanitizer.validate_and_sanitize_cmd(cmd)
        except ValueError as e:
            return self._reject(str(cmd.get("type") or "UNKNOWN"), validation_error(str(e)))

        ctype = validated.type
        if ctype == "SET_DISCIPLINE":
            return self.set_discipline(validated.discipline or "")
        if ctype == "SET_CLOCK_MODE":
            return self.set_clock_mode(validated.mode or "")
        if ctype == "ENQUEUE":
            return self.enqueue(validated.name or "")
        if ctype == "LOAD_NEXT":
            return self.load_next()
        if ctype == "LOAD_SELECTED":
            return self.load_selected(validated.name or "")
        if ctype == "READY_CHECK":
            return self.ready_check()
        if ctype == "START_TIMER":
            return self.start()
        if ctype == "STOP_TIMER":
            return self.stop()
        if ctype == "SET_FORM":
            return self.set_form(
                time=validated.time,
                base_time=validated.base_time,
                additional_time=validated.additional_time,
                comment=validated.comment,
            )
        if ctype == "CALCULATE_TIME":
            return self.calculate_final_time()
        if ctype == "COMMIT":
            return self.commit(validated.status or "", comment=validated.comment)
        if ctype == "COMMIT_BOTTLE":
            return self.commit_bottle(
                validated.choice or "",
                additional_time=validated.additional_time or "",
                requested_status=validated.status or STATUS_PASS,
            )
        if ctype == "SKIP":
            return self.skip()
        if ctype == "CLEAR_SKIPPED":
            return self.clear_skipped()
        # RESET
        return self.reset()
