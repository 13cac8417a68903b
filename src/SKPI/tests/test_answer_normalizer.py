# src/SKPI/tests/test_answer_normalizer.py
import pytest

from SKPI.schemas.feedback import QuestionMeta
from SKPI.services.answer_normalizer import NEUTRAL_SCORE, normalize_answer


def q(qtype, **extra):
    return QuestionMeta.model_validate({"id": "q1", "type": qtype, **extra})


@pytest.mark.parametrize("value", [1, 2, 3, 4, 5, 2.5])
def test_rating_1_5_is_linear(value):
    assert normalize_answer(value, q("RATING_1_5")) == pytest.approx((value - 1) / 4 * 100)


def test_rating_1_5_is_monotonic():
    scores = [normalize_answer(v, q("RATING_1_5")) for v in (1, 2, 3, 4, 5)]
    assert scores == sorted(scores)
    assert scores[0] == 0 and scores[-1] == 100


@pytest.mark.parametrize("value", range(1, 11))
def test_rating_1_10_is_linear(value):
    assert normalize_answer(value, q("RATING_1_10")) == pytest.approx((value - 1) / 9 * 100)


def test_emotional_scale_uses_the_five_point_range():
    assert normalize_answer(3, q("EMOTIONAL_SCALE")) == 50


@pytest.mark.parametrize("qtype,value", [
    ("RATING_1_5", 0),
    ("RATING_1_5", 6),
    ("RATING_1_10", 11),
    ("RATING_1_5", "5"),
    ("RATING_1_5", True),
    ("RATING_1_10", None),
])
def test_rating_rejects_out_of_range_and_non_numbers(qtype, value):
    assert normalize_answer(value, q(qtype)) is None


def test_yes_no():
    assert normalize_answer(True, q("YES_NO")) == 100
    assert normalize_answer(False, q("YES_NO")) == 0
    assert normalize_answer(1, q("YES_NO")) is None
    assert normalize_answer("yes", q("YES_NO")) is None


def test_single_choice_with_five_options():
    question = q("SINGLE_CHOICE", options=["a", "b", "c", "d", "e"])
    assert normalize_answer(0, question) == 0
    assert normalize_answer(2, question) == 50
    assert normalize_answer(4, question) == 100
    assert normalize_answer(5, question) is None
    assert normalize_answer(-1, question) is None
    assert normalize_answer(1.5, question) is None


def test_single_choice_edge_cases():
    assert normalize_answer(0, q("SINGLE_CHOICE")) is None
    assert normalize_answer(0, q("SINGLE_CHOICE", options=["only"])) == NEUTRAL_SCORE
    assert normalize_answer(3.0, q("SINGLE_CHOICE", options=list("abcd"))) == 100


def test_multiple_choice_counts_selected_positive_options():
    question = q("MULTIPLE_CHOICE", options=list("abcd"), positiveOptions=[0, 1])
    assert normalize_answer([0, 1], question) == 100
    assert normalize_answer([0, 3], question) == 50
    assert normalize_answer([0, 0], question) == 50
    assert normalize_answer([], question) == 0
    assert normalize_answer(0, question) is None


def test_multiple_choice_without_positive_options_is_neutral():
    assert normalize_answer([1], q("MULTIPLE_CHOICE", options=list("abc"))) == NEUTRAL_SCORE
    assert normalize_answer([1], q("MULTIPLE_CHOICE")) is None


def test_text_answers():
    assert normalize_answer("Great teacher", q("TEXT")) == NEUTRAL_SCORE
    assert normalize_answer("   ", q("TEXT")) is None
    assert normalize_answer(5, q("TEXT")) is None


def test_unknown_question_type_is_invalid():
    assert normalize_answer(5, q("SLIDER")) is None
