"""
Grading rules for quiz submissions.

A question with more than one correct answer is "multiple-correct": the
submission must select exactly the set of correct answers. Any other
question takes at most one selection, which must be flagged correct.
"""
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Sequence

from core.exceptions import ValidationError


@dataclass(frozen=True)
class GradeResult:
    score: int
    total_questions: int
    passed: bool


def pass_threshold(total_questions: int) -> int:
    """Minimum score needed to pass: half the questions, rounded up."""
    if total_questions < 0:
        raise ValueError("total_questions must be non-negative")
    return math.ceil(total_questions / 2)


def is_passing(score: int, total_questions: int) -> bool:
    return score >= pass_threshold(total_questions)


def correct_answer_ids(question) -> set:
    return {a.id for a in question.answers if a.is_correct}


def is_multiple_correct(question) -> bool:
    return len(correct_answer_ids(question)) > 1


def grade_question(question, selected_answer_ids: Iterable[int]) -> bool:
    selected = list(selected_answer_ids)
    correct = correct_answer_ids(question)
    if is_multiple_correct(question):
        return set(selected) == correct
    if len(set(selected)) > 1:
        raise ValidationError("Question accepts a single answer", question_id=question.id)
    return bool(selected) and selected[0] in correct


def grade_submission(questions: Sequence, selections: Mapping[int, Iterable[int]]) -> GradeResult:
    """Score a whole quiz. Unanswered questions count as incorrect."""
    by_id: Dict[int, object] = {q.id: q for q in questions}
    unknown = set(selections) - set(by_id)
    if unknown:
        raise ValidationError("Submission references unknown questions", question_ids=sorted(unknown))

    score = sum(
        1 for qid, question in by_id.items()
        if qid in selections and grade_question(question, selections[qid])
    )
    total = len(by_id)
    return GradeResult(score=score, total_questions=total, passed=is_passing(score, total))
