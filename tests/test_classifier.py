from __future__ import annotations

import re

import pytest

from plan_executor.verify.classifier import FailureClassifier, FailureSignature, classify_output


@pytest.mark.parametrize(
    ("output", "signature"),
    [
        ("npm ERR! code ELIFECYCLE", "package_manager_error"),
        ("Tests: 3 tests failed, 10 passed", "tests_failed"),
        ("===== 2 failed, 14 passed in 1.20s =====", "pytest_failures"),
        ("FAIL src/app.test.ts\n  renders", "generic_fail"),
        ("src/index.ts(4,7): error TS2322: Type 'string' is not assignable", "compiler_error"),
        ("Build failed with 2 errors", "build_failed"),
        ("Process exited with code 2", "non_zero_exit"),
        ("ModuleNotFoundError: No module named 'flask'", "missing_module"),
        ("Traceback (most recent call last):\n  File 'app.py'", "uncaught_exception"),
    ],
)
def test_known_failure_output_is_classified(output: str, signature: str) -> None:
    result = classify_output(output)

    assert result.failed is True
    assert result.signature == signature
    assert result.reason


@pytest.mark.parametrize(
    "output",
    [
        "",
        "Successfully created file: /work/src/app.py",
        "$ pytest -q\nExit code: 0\nstdout:\n14 passed in 0.80s",
        "Tests: 0 tests failed, 12 passed",
        "===== 12 passed, 0 failed in 2.00s =====",
        "Exit code: 0",
        "Compiled successfully",
    ],
)
def test_clean_output_passes(output: str) -> None:
    assert classify_output(output).failed is False


def test_first_matching_signature_wins() -> None:
    result = classify_output("npm ERR! Cannot find module 'react'")

    assert result.signature == "package_manager_error"


def test_reason_is_excerpt_around_match() -> None:
    output = "a" * 500 + " Build failed: see log " + "b" * 500

    result = FailureClassifier(excerpt_chars=20).classify(output)

    assert result.reason is not None
    assert result.reason.startswith("...")
    assert result.reason.endswith("...")
    assert "Build failed" in result.reason
    assert len(result.reason) < 100


def test_registered_signature_can_take_priority() -> None:
    classifier = FailureClassifier()
    classifier.register(
        FailureSignature(name="lint_error", pattern=re.compile(r"\d+ problems? \(\d+ errors?")),
        first=True,
    )

    result = classifier.classify("✖ 3 problems (1 error, 2 warnings)\nexited with code 1")

    assert result.signature == "lint_error"
