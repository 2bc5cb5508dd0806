"""prompt_toolkit styles for the interactive prompts.

Step pickers use green for the current selection; confirmations use cyan so a
"submit to the warehouse?" question stands apart from the step list above it.
"""

from __future__ import annotations

from prompt_toolkit.styles import Style

_MUTED = "ansibrightblack"


def _prompt_style(accent: str, **overrides: str) -> Style:
    rules = {
        "question": "bold ansibrightcyan",
        "answer": f"bold {accent}",
        "pointer": f"bold {accent}",
        "highlighted": f"bold {accent}",
        "selected": f"bold {accent}",
        "separator": _MUTED,
        "instruction": _MUTED,
        "disabled": _MUTED,
        "error": "bold ansired",
    }
    rules.update(overrides)
    return Style.from_dict(rules)


QUESTIONARY_STYLE_SELECT = _prompt_style(
    "ansibrightgreen",
    checkbox=_MUTED,
    **{"checkbox-selected": "bold ansibrightgreen"},
)

QUESTIONARY_STYLE_CONFIRM = _prompt_style("ansibrightcyan")
