"""Final scoring of an attempt.

Both submission paths (confirmed submit and timer auto-submit) go through
:func:`score_attempt`, a pure function of the fixed question set and the
selected options.
"""

import random
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class ScoreCard:
    score: int
    correct: int
    wrong: int
    unanswered: int
    total_questions: int


def percentage(correct: int, total_questions: int) -> int:
    """Integer percentage rounded half up (12.5 -> 13)."""
    if total_questions <= 0:
        return 0
    return (200 * correct + total_questions) // (2 * total_questions)


def score_attempt(
    question_ids: Sequence[int],
    correct_options: Mapping[int, str],
    selections: Mapping[int, Optional[str]],
    total_questions: int,
) -> ScoreCard:
    """Score the fixed question set against the selected options.

    The denominator is ``total_questions`` rather than the answered count, so
    unanswered questions (including ones missing from the set) count against
    the score.
    """
    correct = 0
    wrong = 0
    for question_id in question_ids:
        selected = selections.get(question_id)
        if not selected:
            continue
        if selected == correct_options.get(question_id):
            correct += 1
        else:
            wrong += 1

    return ScoreCard(
        score=percentage(correct, total_questions),
        correct=correct,
        wrong=wrong,
        unanswered=total_questions - correct - wrong,
        total_questions=total_questions,
    )


def select_question_set(
    pool: Iterable[int],
    total_questions: int,
    shuffle: bool,
    rng: Optional[random.Random] = None,
) -> List[int]:
    """Pick the fixed question set for a new attempt."""
    ids = list(pool)
    if shuffle:
        (rng or random.Random()).shuffle(ids)
    return ids[:total_questions]
