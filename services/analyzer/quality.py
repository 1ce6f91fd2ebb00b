import math
from typing import Optional

from shared.schemas.analysis import AnalysisResult, ValidationReport
from shared.schemas.article import Category
from shared.utils.text import normalize_whitespace, word_count

MIN_SCORE = 1
MAX_SCORE = 10
MIN_SUMMARY_WORDS = 20
MAX_SUMMARY_WORDS = 100

CATEGORIES = [category.value for category in Category]


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate(result: AnalysisResult, prompt: Optional[str] = None) -> ValidationReport:
    """Check a scoring result against schema and range constraints.

    Every violated constraint is reported, so the issue list can be fed back
    into a regeneration prompt as is.
    """
    issues = []

    if result.score is None:
        issues.append("Missing score")
    elif not _is_number(result.score):
        issues.append(f"Score must be a number, got {result.score!r}")
    elif not MIN_SCORE <= result.score <= MAX_SCORE:
        issues.append(f"Score {result.score} is outside the range {MIN_SCORE}-{MAX_SCORE}")

    if result.category not in CATEGORIES:
        issues.append(
            f"Category {result.category!r} is not one of: {', '.join(CATEGORIES)}"
        )

    summary = normalize_whitespace(result.summary or "")
    if not summary:
        issues.append("Summary is empty")
    else:
        words = word_count(summary)
        if words < MIN_SUMMARY_WORDS:
            issues.append(f"Summary too short ({words} words, minimum {MIN_SUMMARY_WORDS})")
        elif words > MAX_SUMMARY_WORDS:
            issues.append(f"Summary too long ({words} words, maximum {MAX_SUMMARY_WORDS})")
        if prompt and summary.lower() in normalize_whitespace(prompt).lower():
            issues.append("Summary copies the input verbatim; write it in your own words")

    return ValidationReport(valid=not issues, issues=issues)
