"""Heuristic task complexity analysis."""

from dataclasses import dataclass, asdict
from typing import Dict, Any

REASONING_KEYWORDS = ("analyze", "explain", "reason", "think", "complex", "difficult", "solve")
CODE_KEYWORDS = ("function", "class", "algorithm", "implement", "code", "programming", "api")
THINKING_TRIGGERS = (
    "step by step",
    "think through",
    "chain of thought",
    "reason about",
    "prove that",
    "explain your reasoning",
)
MULTIMODAL_KEYWORDS = ("image", "video", "audio", "visual", "picture")

THINKING_REASONING_THRESHOLD = 0.6


@dataclass(frozen=True)
class TaskComplexity:
    """Normalized complexity scores derived once from the task text."""

    reasoning_required: float = 0.0
    code_complexity: float = 0.0
    context_length: float = 0.0
    thinking_needed: bool = False
    multimodal: bool = False

    @property
    def overall_score(self) -> float:
        """Mean of the three numeric scores."""
        return (self.reasoning_required + self.code_complexity + self.context_length) / 3.0

    @property
    def code_dominant(self) -> bool:
        return (
            self.code_complexity >= self.reasoning_required
            and self.code_complexity >= self.context_length
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["overall_score"] = self.overall_score
        return data


def _presence_score(text: str, keywords) -> float:
    present = sum(1 for keyword in keywords if keyword in text)
    return present / len(keywords)


def analyze_task_complexity(description: str) -> TaskComplexity:
    """
    Score a task description.

    Keyword scores count presence only, never frequency. Empty or
    non-string input yields all-zero scores.
    """
    if not isinstance(description, str) or not description.strip():
        return TaskComplexity()

    text = description.lower()
    word_count = len(text.split())

    reasoning = _presence_score(text, REASONING_KEYWORDS)
    code = _presence_score(text, CODE_KEYWORDS)
    context = min(word_count / 100.0, 1.0)

    thinking = (
        any(trigger in text for trigger in THINKING_TRIGGERS)
        or reasoning > THINKING_REASONING_THRESHOLD
    )
    multimodal = any(keyword in text for keyword in MULTIMODAL_KEYWORDS)

    return TaskComplexity(
        reasoning_required=reasoning,
        code_complexity=code,
        context_length=context,
        thinking_needed=thinking,
        multimodal=multimodal,
    )
