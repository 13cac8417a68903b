# src/SKPI/services/answer_normalizer.py
"""
Convert one raw feedback answer into a 0-100 score.

``normalize_answer`` returns ``None`` for an invalid answer (wrong type,
out of range, empty). Invalid answers are dropped by the aggregator and do
not count as responses.
"""
from __future__ import annotations

from numbers import Real
from typing import Any, Optional

from SKPI.schemas.feedback import QuestionMeta, QuestionType

NEUTRAL_SCORE = 50.0


def _is_number(value: Any) -> bool:
    # bool is an int subclass; a checkbox answer is never a rating
    return isinstance(value, Real) and not isinstance(value, bool)


def _as_index(value: Any) -> Optional[int]:
    if not _is_number(value):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        return int(value)
    return int(value)


def _scale(value: Any, low: int, high: int) -> Optional[float]:
    if not _is_number(value) or value < low or value > high:
        return None
    return (value - low) / (high - low) * 100


def normalize_answer(answer: Any, question: QuestionMeta) -> Optional[float]:
    try:
        qtype = QuestionType(question.type)
    except ValueError:
        return None

    if answer is None:
        return None

    if qtype is QuestionType.YES_NO:
        if not isinstance(answer, bool):
            return None
        return 100.0 if answer else 0.0

    if qtype in (QuestionType.RATING_1_5, QuestionType.EMOTIONAL_SCALE):
        return _scale(answer, 1, 5)

    if qtype is QuestionType.RATING_1_10:
        return _scale(answer, 1, 10)

    if qtype is QuestionType.SINGLE_CHOICE:
        # options are ordered from worst to best
        index = _as_index(answer)
        option_count = len(question.options)
        if index is None or option_count == 0:
            return None
        max_index = option_count - 1
        if index < 0 or index > max_index:
            return None
        if max_index == 0:
            return NEUTRAL_SCORE
        return index / max_index * 100

    if qtype is QuestionType.MULTIPLE_CHOICE:
        if not isinstance(answer, list) or not question.options:
            return None
        positive = set(question.positive_options)
        if not positive:
            return NEUTRAL_SCORE
        selected = {_as_index(a) for a in answer} - {None}
        return len(selected & positive) / len(positive) * 100

    if qtype is QuestionType.TEXT:
        # sentiment analysis is not done yet; any real text is neutral
        if isinstance(answer, str) and answer.strip():
            return NEUTRAL_SCORE
        return None

    return None
