"""Post-hoc failure detection over accumulated tool output.

A tool call can succeed while the command it ran failed (a build that printed
``npm ERR!`` or a test runner reporting failures). The classifier scans the
text against an ordered signature table; the first match wins and its
surrounding text becomes the human-readable reason.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class FailureSignature:
    name: str
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class Classification:
    failed: bool
    reason: str | None = None
    signature: str | None = None


def _sig(name: str, pattern: str, flags: int = 0) -> FailureSignature:
    return FailureSignature(name=name, pattern=re.compile(pattern, flags))


DEFAULT_SIGNATURES: tuple[FailureSignature, ...] = (
    _sig(
        "package_manager_error",
        r"npm ERR!|yarn error|pnpm ERR|ERR_PNPM_\w+|error: could not compile",
    ),
    _sig(
        "tests_failed",
        r"\b[1-9]\d*\s+(?:tests?|specs?)\s+failed\b|(?<!\d )\btests?\s+failed\b",
        re.IGNORECASE,
    ),
    _sig("pytest_failures", r"=+ .*\b[1-9]\d* (?:failed|errors?)\b.* =+|^FAILED\s", re.MULTILINE),
    _sig("generic_fail", r"(?:^|\s)FAIL(?:ED)?\s"),
    _sig("compiler_error", r"\berror\s+(?:TS\d{4}|CS\d{4}|E\d{4})\b|\berror\[E\d{4}\]"),
    _sig("build_failed", r"\bbuild failed\b|\bcompilation failed\b", re.IGNORECASE),
    _sig(
        "non_zero_exit",
        r"\bexit(?:ed with)?\s+(?:code|status)[:\s]+[1-9]\d*\b|\bexited with\s+[1-9]\d*\b",
        re.IGNORECASE,
    ),
    _sig(
        "missing_module",
        r"Cannot find module|Module not found|ModuleNotFoundError|No module named|ImportError",
    ),
    _sig(
        "uncaught_exception",
        r"\b(?:Uncaught\s+)?(?:TypeError|ReferenceError|SyntaxError|RangeError|"
        r"AttributeError|NameError|KeyError|ValueError|UnhandledPromiseRejection\w*)\b|"
        r"Traceback \(most recent call last\)|\bpanicked at\b",
    ),
)


class FailureClassifier:
    """Ordered, pluggable signature table.

    ``excerpt_chars`` is the number of characters kept on each side of the
    match when building the reason.
    """

    def __init__(
        self,
        signatures: Iterable[FailureSignature] | None = None,
        *,
        excerpt_chars: int = 200,
    ) -> None:
        self.signatures: list[FailureSignature] = list(
            DEFAULT_SIGNATURES if signatures is None else signatures
        )
        self.excerpt_chars = excerpt_chars

    def register(self, signature: FailureSignature, *, first: bool = False) -> None:
        if first:
            self.signatures.insert(0, signature)
        else:
            self.signatures.append(signature)

    def classify(self, output: str) -> Classification:
        if not output:
            return Classification(failed=False)
        for signature in self.signatures:
            match = signature.pattern.search(output)
            if match is None:
                continue
            return Classification(
                failed=True,
                reason=_excerpt(output, match.start(), match.end(), self.excerpt_chars),
                signature=signature.name,
            )
        return Classification(failed=False)


def classify_output(output: str, *, excerpt_chars: int = 200) -> Classification:
    return FailureClassifier(excerpt_chars=excerpt_chars).classify(output)


def _excerpt(text: str, start: int, end: int, width: int) -> str:
    left = max(0, start - width)
    right = min(len(text), end + width)
    snippet = " ".join(text[left:right].split())
    if left > 0:
        snippet = "..." + snippet
    if right < len(text):
        snippet = snippet + "..."
    return snippet
