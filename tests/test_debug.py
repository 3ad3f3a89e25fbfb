"""Tests for the debug console parser and command application."""

import pytest

from ludic_reader.debug import (
    AddTopics,
    DebugError,
    ExitDebug,
    Goto,
    SetField,
    ShowMenu,
    apply_debug_command,
    is_debug_command,
    parse_debug_command,
    run_debug_command,
)
from ludic_reader.models import GameState


class TestDetection:
    @pytest.mark.parametrize("text", ["debug", "/DEBUG", "/goto:HUNTING", "/set:XP:5", "/exit_debug", " /debug:add_topics "])
    def test_debug_commands(self, text: str) -> None:
        assert is_debug_command(text) is True

    @pytest.mark.parametrize("text", ["", None, "hello", "goto:HUNTING", "the debug word"])
    def test_ordinary_input(self, text) -> None:
        assert is_debug_command(text) is False


class TestParse:
    def test_menu(self) -> None:
        assert isinstance(parse_debug_command("/debug"), ShowMenu)
        assert isinstance(parse_debug_command("Debug"), ShowMenu)

    def test_exit(self) -> None:
        assert isinstance(parse_debug_command("/exit_debug"), ExitDebug)

    def test_add_topics(self) -> None:
        assert isinstance(parse_debug_command("/debug:add_topics"), AddTopics)

    def test_goto_case_insensitive(self) -> None:
        cmd = parse_debug_command("/goto:alchemy")
        assert cmd == Goto(phase="ALCHEMY")

    def test_goto_invalid_phase(self) -> None:
        cmd = parse_debug_command("/goto:READING")
        assert isinstance(cmd, DebugError)
        assert "Invalid phase: READING" in cmd.message

    def test_set_xp(self) -> None:
        assert parse_debug_command("/set:xp:500") == SetField(key="XP", value="500")

    def test_set_phase_upper(self) -> None:
        assert parse_debug_command("/set:phase:judgment") == SetField(key="PHASE", value="JUDGMENT")

    def test_set_non_integer(self) -> None:
        cmd = parse_debug_command("/set:MANA:lots")
        assert isinstance(cmd, DebugError)
        assert "must be an integer" in cmd.message

    def test_set_unknown_key(self) -> None:
        cmd = parse_debug_command("/set:GOLD:5")
        assert isinstance(cmd, DebugError)
        assert "Unknown setting: GOLD" in cmd.message

    def test_set_malformed(self) -> None:
        assert isinstance(parse_debug_command("/set:XP"), DebugError)

    def test_unknown_debug_subcommand(self) -> None:
        cmd = parse_debug_command("/debug:explode")
        assert isinstance(cmd, DebugError)
        assert cmd.message.startswith("Unknown debug command")

    def test_not_a_command(self) -> None:
        assert parse_debug_command("hello") is None


class TestApply:
    def test_goto_resets_counters(self) -> None:
        state = GameState(current_chapter=5, combo_count=4, consecutive_failures=2, xp_total=300, level=2)
        outcome = apply_debug_command(state, Goto(phase="JUDGMENT"))
        assert outcome.state.current_phase == "JUDGMENT"
        assert outcome.state.current_chapter == 1
        assert outcome.state.combo_count == 0
        assert outcome.state.consecutive_failures == 0
        assert outcome.state.xp_total == 300

    def test_goto_syntopical_bypasses_gates(self) -> None:
        outcome = apply_debug_command(GameState(), Goto(phase="SYNTOPICAL"))
        assert outcome.state.current_phase == "SYNTOPICAL"

    def test_set_xp_recomputes_level(self) -> None:
        outcome = apply_debug_command(GameState(), SetField(key="XP", value="1200"))
        assert outcome.state.xp_total == 1200
        assert outcome.state.level == 4
        assert outcome.message == "Set XP = 1200"

    def test_set_negative_xp_floors(self) -> None:
        outcome = apply_debug_command(GameState(xp_total=50), SetField(key="XP", value="-10"))
        assert outcome.state.xp_total == 0
        assert outcome.state.level == 1

    def test_set_level_moves_xp(self) -> None:
        outcome = apply_debug_command(GameState(), SetField(key="LEVEL", value="3"))
        assert (outcome.state.level, outcome.state.xp_total) == (3, 500)

    def test_set_level_clamped(self) -> None:
        outcome = apply_debug_command(GameState(), SetField(key="LEVEL", value="42"))
        assert outcome.state.level == 5

    @pytest.mark.parametrize("value,expected", [("150", 100), ("-3", 0), ("40", 40)])
    def test_set_mana_clamped(self, value: str, expected: int) -> None:
        assert apply_debug_command(GameState(), SetField(key="MANA", value=value)).state.mana == expected

    def test_set_phase(self) -> None:
        outcome = apply_debug_command(GameState(combo_count=3), SetField(key="PHASE", value="HUNTING"))
        assert outcome.state.current_phase == "HUNTING"
        assert outcome.state.combo_count == 3

    def test_menu_keeps_state(self) -> None:
        state = GameState(xp_total=10)
        assert apply_debug_command(state, ShowMenu()).state == state


class TestRun:
    def test_parse_error_leaves_state(self) -> None:
        state = GameState(mana=70)
        outcome = run_debug_command(state, "/set:MANA:abc")
        assert outcome.error is not None
        assert outcome.state == state
        assert outcome.command is None

    def test_not_debug(self) -> None:
        outcome = run_debug_command(GameState(), "hello")
        assert outcome.error == "Not a debug command"

    def test_runs_command(self) -> None:
        outcome = run_debug_command(GameState(), "/goto:HUNTING")
        assert outcome.error is None
        assert outcome.state.current_phase == "HUNTING"
        assert isinstance(outcome.command, Goto)
