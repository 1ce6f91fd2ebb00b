from typing import Any, List, Optional

from pydantic import BaseModel, Field


class AnalysisResult(BaseModel):
    """Structured output of a scoring call, before validation.

    Fields are loosely typed on purpose: the quality validator, not the
    parser, decides whether the model output is acceptable.
    """

    score: Any = None
    summary: str = ""
    category: Optional[str] = None
    reasoning: Optional[str] = None


class ValidationReport(BaseModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)
