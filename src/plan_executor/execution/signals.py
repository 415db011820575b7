"""Resume signal grammar: ``approved | issue | decision:<optionId>``.

The signal is the trailing token of the invocation input, so both
``"approved"`` and ``".planning/phases/01-setup/01-02-PLAN.md approved"``
carry the same signal.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

SignalKind = Literal["approved", "issue", "decision"]

_SIGNAL_PATTERN = re.compile(
    r"(?:^|\s)(?P<signal>approved|issue|decision:(?P<option>[\w.-]+))\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ResumeSignal:
    kind: SignalKind
    option_id: str | None = None

    def __str__(self) -> str:
        if self.kind == "decision":
            return f"decision:{self.option_id}"
        return self.kind


def parse_resume_signal(text: str | None) -> ResumeSignal | None:
    if not text:
        return None
    match = _SIGNAL_PATTERN.search(text.strip())
    if match is None:
        return None
    option = match.group("option")
    if option is not None:
        return ResumeSignal(kind="decision", option_id=option)
    return ResumeSignal(kind=match.group("signal").lower())  # type: ignore[arg-type]
