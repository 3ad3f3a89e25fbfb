"""Markdown UI components rendered from Handlebars templates.

Every render_* function returns a Markdown string. Templates are compiled
once per source string and cached; user-supplied text is emitted with
triple-stash ({{{ }}}) so it is not HTML-escaped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from ludic_reader.difficulty import get_config, list_difficulties, round_half_up
from ludic_reader.engine import MANA_MAX, calculate_level, combo_multiplier, next_level_info
from ludic_reader.models import (
    ALL_PHASES,
    Book,
    BookSummary,
    GameState,
    LevelUp,
    Milestone,
    PhaseCheck,
    Proposition,
    Quest,
    SearchHit,
    Term,
    UnlockCheck,
    ValidationResult,
    VerificationQuestion,
    VerificationResult,
    Vision,
)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

BAR_WIDTH = 10

PHASE_EMOJIS = {
    "SCOUTING": "🔍",
    "HUNTING": "🎯",
    "ALCHEMY": "⚗️",
    "JUDGMENT": "⚖️",
    "SYNTOPICAL": "🔱",
}

PHASE_NAMES = {
    "SCOUTING": "Scouting Phase",
    "HUNTING": "Hunting Phase",
    "ALCHEMY": "Alchemy Phase",
    "JUDGMENT": "Judgment Phase",
    "SYNTOPICAL": "Syntopical Phase",
}


class RenderError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_upper(this, value):
    """{{upper value}}: upper-cased string."""
    return str(value).upper()


_HELPERS: dict[str, Callable] = {
    "upper": _helper_upper,
}


def render_template(template_str: str, context: dict[str, Any]) -> str:
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise RenderError(f"Template error: {e}") from e


def _bar(current: float, maximum: float, full: str, empty: str) -> str:
    filled = round_half_up(current / maximum * BAR_WIDTH) if maximum > 0 else BAR_WIDTH
    filled = max(0, min(BAR_WIDTH, filled))
    return full * filled + empty * (BAR_WIDTH - filled)


def _numbered(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**item, "n": i + 1} for i, item in enumerate(items)]


# ── Progress ─────────────────────────────────────────────

XP_BAR = "XP: {{bar}} {{current}}/{{target}}"
MANA_GAUGE = "{{icon}} Mana: {{bar}} {{mana}}%"
PROGRESS = (
    "**Progress:** {{percent}}% (Ch {{chapter}}/{{total}}) | "
    "**Understanding:** {{understanding}}%"
)


def render_xp_bar(xp: int) -> str:
    """Progress towards the next level; a full bar at the top level."""
    nxt = next_level_info(xp)
    target = nxt.xp_required if nxt else calculate_level(xp).xp_required
    return render_template(XP_BAR, {
        "bar": _bar(xp, target, "🟩", "⬜") if nxt else "🟩" * BAR_WIDTH,
        "current": xp,
        "target": target,
    })


def render_mana_gauge(mana: int) -> str:
    if mana > 50:
        icon = "🔮"
    elif mana > 20:
        icon = "⚠️"
    else:
        icon = "💀"
    return render_template(MANA_GAUGE, {
        "icon": icon,
        "bar": _bar(mana, MANA_MAX, "█", "░"),
        "mana": mana,
    })


def render_progress(current_chapter: int, total_chapters: int, understanding_percent: int) -> str:
    percent = round_half_up(current_chapter / total_chapters * 100) if total_chapters else 0
    return render_template(PROGRESS, {
        "percent": percent,
        "chapter": current_chapter,
        "total": total_chapters,
        "understanding": understanding_percent,
    })


DASHBOARD = """\
# 🏰 {{{title}}}

**👤 Level {{level}} ({{level_title}})**  |  {{{xp_bar}}}  |  {{{mana_gauge}}}
**📍 Phase:** {{phase}}  |  **📖 Chapter:** {{chapter}}
{{#if combo}}{{{combo}}}
{{/if}}
---
"""


def render_dashboard(state: GameState, book: Book) -> str:
    return render_template(DASHBOARD, {
        "title": book.title,
        "level": state.level,
        "level_title": calculate_level(state.xp_total).title,
        "xp_bar": render_xp_bar(state.xp_total),
        "mana_gauge": render_mana_gauge(state.mana),
        "phase": state.current_phase,
        "chapter": state.current_chapter,
        "combo": render_combo_streak(state.combo_count) if state.combo_count > 1 else "",
    })


# ── Quests ───────────────────────────────────────────────

QUEST_CARD = """\
╭──────────────────────────────────────╮
│ ⚔️ **QUEST: {{type}}**{{#if easy}} (easy){{/if}}
│
│ {{{description}}}
│
│ 🏆 Reward: +{{xp_reward}} XP
╰──────────────────────────────────────╯
"""

QUEST_SHARDS = """\
{{{card}}}
---

### 📜 Wisdom Shards

{{#each shards}}
#### 💠 Shard #{{n}}

> {{{text}}}

*📍 Location: {{{chapter_title}}}*
{{#if file_uri}}[**📖 Read Full Chapter**]({{{file_uri}}})
{{/if}}
---
{{/each}}"""

QUEST_COMPLETE = """\
✅ **QUEST COMPLETE!**
+{{xp}} XP
_{{{feedback}}}_
"""

QUEST_FAILED = """\
❌ **QUEST FAILED**
-{{mana}} Mana
{{#if hints}}
**Hints:**
{{#each hints}}- 💡 {{{this}}}
{{/each}}{{/if}}"""


def render_quest_card(quest: Quest) -> str:
    return render_template(QUEST_CARD, {
        "type": quest.type,
        "easy": quest.difficulty_tier == "EASY",
        "description": quest.description,
        "xp_reward": quest.xp_reward,
    })


def render_quest_with_shards(quest: Quest, shards: list[SearchHit]) -> str:
    """Quest card followed by the supporting passages ("shards") from the book."""
    card = render_quest_card(quest)
    if not shards:
        return card
    return render_template(QUEST_SHARDS, {
        "card": card,
        "shards": _numbered([
            {
                "text": shard.text.strip(),
                "chapter_title": shard.metadata.get("chapter_title") or "Unknown",
                "file_uri": shard.metadata.get("file_uri", ""),
            }
            for shard in shards
        ]),
    })


def render_quest_complete(result: ValidationResult, xp_gained: int) -> str:
    return render_template(QUEST_COMPLETE, {"xp": xp_gained, "feedback": result.feedback})


def render_quest_failed(result: ValidationResult, mana_cost: int) -> str:
    return render_template(QUEST_FAILED, {"mana": abs(mana_cost), "hints": result.hints})


# ── Inventory ────────────────────────────────────────────

TERMS_PANEL = """\
### 📜 Glossary
| # | Term | Definition |
|---|---|---|
{{#each terms}}| {{n}} | **{{{word}}}** | {{{definition}}} |
{{/each}}"""

PROPOSITIONS_PANEL = """\
### 💎 Propositions
| # | Statement |
|---|---|
{{#each propositions}}| {{n}} | {{{statement}}} |
{{/each}}"""


def render_terms_panel(terms: list[Term]) -> str:
    if not terms:
        return "*No terms collected yet.*"
    return render_template(TERMS_PANEL, {
        "terms": _numbered([{"word": t.word, "definition": t.definition} for t in terms]),
    })


def render_propositions_panel(propositions: list[Proposition]) -> str:
    if not propositions:
        return "*No propositions collected yet.*"
    return render_template(PROPOSITIONS_PANEL, {
        "propositions": _numbered([{"statement": p.statement} for p in propositions]),
    })


# ── Feedback ─────────────────────────────────────────────

LEVEL_UP = """\
🎉🎉🎉 **LEVEL UP!** 🎉🎉🎉
━━━━━━━━━━━━━━━━━━━━━━━━━━
Current Level: **{{level}}**
Title: **{{title}}**
━━━━━━━━━━━━━━━━━━━━━━━━━━
"""

COMBO_STREAK = "🔥 **Context Streak: {{count}}** (XP x{{multiplier}})"

REST_PROMPT = """\
⚠️ **MANA LOW ({{mana}}%)** ⚠️
{{{message}}}
*Suggested Action: Type `rest` to recover mana.*
"""


def render_level_up(level_up: LevelUp) -> str:
    return render_template(LEVEL_UP, {"level": level_up.new_level, "title": level_up.new_title})


def render_combo_streak(combo_count: int, multiplier: float | None = None) -> str:
    if multiplier is None:
        multiplier = combo_multiplier(combo_count)
    return render_template(COMBO_STREAK, {"count": combo_count, "multiplier": f"{multiplier:g}"})


def render_rest_prompt(mana: int, message: str = "Your focus is fading.") -> str:
    return render_template(REST_PROMPT, {"mana": mana, "message": message})


HINTS = """\
💡 **Hints** (-{{mana}} Mana)
{{#each hints}}- {{{this}}}
{{/each}}"""


def render_hints(hints: list[str], mana_cost: int) -> str:
    return render_template(HINTS, {"hints": hints, "mana": abs(mana_cost)})


# ── Understanding verification ───────────────────────────

VERIFICATION_QUESTIONS = """\
### 🔍 Verify Your Understanding
{{#each questions}}**{{n}}.** {{{question}}}

{{/each}}"""

VERIFICATION_RESULT = """\
{{#if passed}}✅ **Understanding verified** (Score: {{score}}, needed {{threshold}})
Critiques are now open.
{{else}}❌ **Verification failed** (Score: {{score}}, needed {{threshold}})
{{{feedback}}}
{{#each hints}}- {{{this}}}
{{/each}}{{/if}}"""


def render_verification_questions(questions: list[VerificationQuestion]) -> str:
    if not questions:
        return "*No passages to build questions from yet.*"
    return render_template(VERIFICATION_QUESTIONS, {
        "questions": _numbered([{"question": q.question} for q in questions]),
    })


def render_verification_result(result: VerificationResult) -> str:
    return render_template(VERIFICATION_RESULT, {
        "passed": result.passed,
        "score": round_half_up(result.score),
        "threshold": result.threshold,
        "feedback": result.feedback,
        "hints": result.hints,
    })


# ── Phases ───────────────────────────────────────────────

PHASE_STATUS = """\
### 🧭 Phase: {{phase}}
{{#if ready}}✅ Ready to advance to the next phase.
{{else}}Still to do:
{{#each missing}}- [ ] {{{this}}}
{{/each}}{{/if}}"""

ADVANCED_UNLOCK = """\
{{#if can_unlock}}## 🔱 Syntopical Reading Unlocked!

{{{reason}}}

**Eligible topics:**
{{#each topics}}- {{{this}}}
{{/each}}{{else}}🔒 **Syntopical Reading locked**

{{{reason}}}
{{/if}}"""


def render_phase_status(state: GameState, check: PhaseCheck) -> str:
    return render_template(PHASE_STATUS, {
        "phase": state.current_phase,
        "ready": check.ready,
        "missing": check.missing,
    })


def render_advanced_unlock(check: UnlockCheck) -> str:
    return render_template(ADVANCED_UNLOCK, {
        "can_unlock": check.can_unlock,
        "reason": check.reason,
        "topics": check.eligible_topics,
    })


# ── Debug and difficulty menus ───────────────────────────

DEBUG_MENU = """\
## 🔧 Debug Mode

### Phase jumps
| Command | Effect |
|------|------|
{{#each phases}}| `/goto:{{this}}` | Jump to {{this}} |
{{/each}}
### Values
| Command | Effect |
|------|------|
| `/set:XP:<n>` | Set total XP (level follows) |
| `/set:LEVEL:<n>` | Set level (1-5) |
| `/set:MANA:<n>` | Set mana (0-100) |
| `/set:PHASE:<phase>` | Set current phase |

### Test data
| Command | Effect |
|------|------|
| `/debug:add_topics` | Add test topic data |

### Exit
| Command | Effect |
|------|------|
| `/exit_debug` | Leave debug mode |

---
*Progression requirements are not enforced in debug mode.*
"""

DIFFICULTY_MENU = """\
## 🎮 Select Your Difficulty Level

Choose the challenge that suits your reading goals:

{{#each levels}}
### {{n}}. {{name}} ({{upper id}}){{#if advanced}} 🔱{{/if}}
- XP Multiplier: {{multiplier}}x
- Requirements: {{terms}} terms, {{propositions}} props
- Hints: {{#if hints}}Available{{else}}Not Available{{/if}}
{{#if advanced}}- 🌟 Includes Syntopical Reading
{{/if}}
{{/each}}
🔱 = includes Syntopical Reading (the final phase)

Reply with `difficulty: [beginner|apprentice|master|expert]` to start.

---
💡 Type `/debug` to enter debug mode (jump to any phase).
"""

DIFFICULTY_CHANGE_MENU = """\
## 🎮 Change Difficulty Level

Current: **{{current_name}} ({{upper current_id}})**

Select a new difficulty level:

{{#each levels}}{{#if current}}✅ **[CURRENT]**{{else}}{{n}}.{{/if}} {{name}} ({{upper id}})
   XP: {{multiplier}}x | Terms: {{terms}} | Props: {{propositions}}

{{/each}}Reply with `change_difficulty: [beginner|apprentice|master|expert]` to switch.
⚠️ **Note**: Switching difficulty starts a separate game state for this book.
"""


def _difficulty_rows(current_id: str | None = None) -> list[dict[str, Any]]:
    return _numbered([
        {
            "id": level.id,
            "name": level.name,
            "multiplier": f"{level.xp_multiplier:g}",
            "terms": level.thresholds.terms,
            "propositions": level.thresholds.propositions,
            "hints": level.hints_available,
            "advanced": bool(level.advanced_mode and level.advanced_mode.enabled),
            "current": level.id == current_id,
        }
        for level in list_difficulties()
    ])


def render_debug_menu() -> str:
    return render_template(DEBUG_MENU, {"phases": list(ALL_PHASES)})


def render_difficulty_menu() -> str:
    return render_template(DIFFICULTY_MENU, {"levels": _difficulty_rows()})


def render_difficulty_change_menu(current_id: str) -> str:
    config = get_config(current_id)
    return render_template(DIFFICULTY_CHANGE_MENU, {
        "current_id": config.id,
        "current_name": config.name,
        "levels": _difficulty_rows(config.id),
    })


# ── Milestones and summaries ─────────────────────────────

MILESTONE_CARD = """\
╔══════════════════════════════════════════════════╗
  {{emoji}} MILESTONE ACHIEVED! 🔱
╠══════════════════════════════════════════════════╣
  **{{phase_name}} Complete**
  Difficulty: **{{upper difficulty}}**
  Time: {{timestamp}}
╠══════════════════════════════════════════════════╣
  📊 Statistics
  🌟 XP Gained: +{{stats.xp}}
  📜 Terms Collected: {{stats.terms}}
  💎 Propositions: {{stats.propositions}}
  ⚡ Arguments Built: {{stats.arguments}}
╚══════════════════════════════════════════════════╝

*Keep pushing forward, reader!*
"""

BOOK_SUMMARY = """\
---
title: Reading Summary - {{{book_title}}}
author: Ludic Deep Reader
date: {{completion_date}}
difficulty: {{difficulty_name}}
---

# 📚 Deep Reading Summary Report

## 📖 Book Information

- **Title**: {{{book_title}}}
- **Author**: {{{author}}}
- **Difficulty Level**: {{difficulty_name}} ({{upper difficulty}})
- **Completion Date**: {{completion_date}}
- **Final Level**: Level {{level_achieved}}

---

## 🌟 Overall Achievement

- **Total XP Earned**: +{{total_xp}}
- **Reading Sessions**: {{phase_count}} phases completed

---

## 📊 Phase-by-Phase Breakdown

{{#each phases}}
### {{emoji}} Phase {{n}}: {{name}}
{{#if stats}}- XP: +{{stats.xp}}
- Terms Collected: {{stats.terms}}
- Propositions: {{stats.propositions}}
- Arguments Built: {{stats.arguments}}
{{else}}*Not completed*
{{/if}}{{/each}}
---

*Generated by Ludic Deep Reader*
"""


def render_milestone_card(milestone: Milestone) -> str:
    return render_template(MILESTONE_CARD, {
        "emoji": milestone.emoji,
        "phase_name": milestone.phase_name,
        "difficulty": milestone.difficulty,
        "timestamp": milestone.timestamp,
        "stats": {
            "xp": milestone.stats.get("xp", 0),
            "terms": milestone.stats.get("terms", 0),
            "propositions": milestone.stats.get("propositions", 0),
            "arguments": milestone.stats.get("arguments", 0),
        },
    })


def render_book_summary(summary: BookSummary) -> str:
    phases = _numbered([
        {
            "emoji": PHASE_EMOJIS.get(phase, "🏆"),
            "name": PHASE_NAMES.get(phase, phase),
            "stats": stats,
        }
        for phase, stats in summary.phases_completed.items()
    ])
    return render_template(BOOK_SUMMARY, {
        **summary.model_dump(),
        "phase_count": sum(1 for stats in summary.phases_completed.values() if stats is not None),
        "phases": phases,
    })


# ── Visions ──────────────────────────────────────────────

VISION_REWARD = """\
## ✨ Insight Vision Revealed

> **"Your thought has condensed into an image."**

![Vision Fragment]({{{image_path}}})
*"{{{concept}}}"*

---
"""

VISIONS_GALLERY = """\
## 🖼️ Visions Gallery

{{#each visions}}
### 🍀 Fragment #{{n}}

![{{{concept}}}]({{{image_path}}})

> **Insight**: {{{concept}}}

*✨ Revealed: {{timestamp}}*

---
{{/each}}"""


def render_vision_reward(vision: Vision) -> str:
    return render_template(VISION_REWARD, vision.model_dump())


def render_visions_gallery(visions: list[Vision]) -> str:
    if not visions:
        return "*Your gallery is empty. Read deeply to fill it.*"
    return render_template(VISIONS_GALLERY, {"visions": _numbered([v.model_dump() for v in visions])})
