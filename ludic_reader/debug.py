"""Debug console — operator commands that bypass progression gating.

Commands (case-insensitive, parsed once into a closed set of variants):
  /debug, debug         → ShowMenu
  /goto:<PHASE>         → Goto        (chapter 1, combo and failures cleared)
  /set:<KEY>:<VALUE>    → SetField    KEY ∈ XP | LEVEL | MANA | PHASE
  /debug:add_topics     → AddTopics
  /exit_debug           → ExitDebug

Malformed commands parse to a DebugError. Applying a command always leaves a
valid GameState: setting XP recomputes the level, setting LEVEL moves XP to
that level's requirement, and mana is clamped.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from ludic_reader.engine import (
    LEVEL_THRESHOLDS,
    calculate_level,
    clamp_mana,
    level_info,
)
from ludic_reader.models import ALL_PHASES, GameState, Phase

logger = logging.getLogger(__name__)

SETTABLE_KEYS = ("XP", "LEVEL", "MANA", "PHASE")


class ShowMenu(BaseModel):
    kind: Literal["show_menu"] = "show_menu"


class Goto(BaseModel):
    kind: Literal["goto"] = "goto"
    phase: Phase


class SetField(BaseModel):
    kind: Literal["set"] = "set"
    key: Literal["XP", "LEVEL", "MANA", "PHASE"]
    value: str


class AddTopics(BaseModel):
    kind: Literal["add_topics"] = "add_topics"


class ExitDebug(BaseModel):
    kind: Literal["exit"] = "exit"


DebugCommand = Annotated[
    Union[ShowMenu, Goto, SetField, AddTopics, ExitDebug],
    Field(discriminator="kind"),
]


class DebugError(BaseModel):
    message: str


class DebugOutcome(BaseModel):
    command: DebugCommand | None = None
    state: GameState | None = None
    message: str = ""
    error: str | None = None


def is_debug_command(text: str | None) -> bool:
    if not text:
        return False
    cmd = text.strip().lower()
    return cmd in ("debug", "/debug", "/exit_debug") or cmd.startswith(("/debug", "/goto:", "/set:"))


def parse_debug_command(text: str) -> DebugCommand | DebugError | None:
    """Parse operator input. Returns None when the input is not a debug command."""
    if not is_debug_command(text):
        return None
    cmd = text.strip()
    lower = cmd.lower()

    if lower in ("debug", "/debug"):
        return ShowMenu()
    if lower == "/exit_debug":
        return ExitDebug()
    if lower == "/debug:add_topics":
        return AddTopics()

    if lower.startswith("/goto:"):
        phase = cmd[len("/goto:"):].strip().upper()
        if phase not in ALL_PHASES:
            return DebugError(message=f"Invalid phase: {phase}. Available phases: {', '.join(ALL_PHASES)}")
        return Goto(phase=phase)

    if lower.startswith("/set:"):
        parts = cmd[len("/set:"):].split(":")
        if len(parts) != 2:
            return DebugError(message="Malformed command, use /set:KEY:VALUE")
        key, value = parts[0].strip().upper(), parts[1].strip()
        if key not in SETTABLE_KEYS:
            return DebugError(message=f"Unknown setting: {key}. Available: {', '.join(SETTABLE_KEYS)}")
        if key == "PHASE":
            if value.upper() not in ALL_PHASES:
                return DebugError(
                    message=f"Invalid phase: {value.upper()}. Available phases: {', '.join(ALL_PHASES)}"
                )
            value = value.upper()
        else:
            try:
                int(value)
            except ValueError:
                return DebugError(message=f"{key} must be an integer, got {value!r}")
        return SetField(key=key, value=value)

    return DebugError(message=f"Unknown debug command: {cmd}. Type /debug to list commands.")


def apply_debug_command(state: GameState, command: DebugCommand) -> DebugOutcome:
    """Execute a parsed command against a state, ignoring all progression gates."""
    if isinstance(command, Goto):
        new_state = state.model_copy(update={
            "current_phase": command.phase,
            "current_chapter": 1,
            "combo_count": 0,
            "consecutive_failures": 0,
        })
        logger.info("debug goto %s", command.phase)
        return DebugOutcome(command=command, state=new_state, message=f"Jumped to phase: {command.phase}")

    if isinstance(command, SetField):
        return DebugOutcome(
            command=command,
            state=_set_field(state, command),
            message=f"Set {command.key} = {command.value}",
        )

    if isinstance(command, ShowMenu):
        return DebugOutcome(command=command, state=state, message="Debug mode enabled")
    if isinstance(command, AddTopics):
        return DebugOutcome(command=command, state=state, message="Debug: adding test topics")
    return DebugOutcome(command=command, state=state, message="Debug mode disabled")


def _set_field(state: GameState, command: SetField) -> GameState:
    if command.key == "XP":
        xp = max(0, int(command.value))
        return state.model_copy(update={"xp_total": xp, "level": calculate_level(xp).level})
    if command.key == "LEVEL":
        top = LEVEL_THRESHOLDS[-1].level
        info = level_info(max(1, min(top, int(command.value))))
        return state.model_copy(update={"level": info.level, "xp_total": info.xp_required})
    if command.key == "MANA":
        return state.model_copy(update={"mana": clamp_mana(int(command.value))})
    return state.model_copy(update={"current_phase": command.value})


def run_debug_command(state: GameState, text: str) -> DebugOutcome:
    """Parse and apply in one step; parse failures become an outcome with `error` set."""
    parsed = parse_debug_command(text)
    if parsed is None:
        return DebugOutcome(state=state, error="Not a debug command")
    if isinstance(parsed, DebugError):
        return DebugOutcome(state=state, error=parsed.message)
    return apply_debug_command(state, parsed)
