"""Question Snapshot Builder.

Turns an assessment's block specs into the ordered, immutable question list
bound to one attempt:

  - blocks are materialized in ``position`` order and concatenated
  - order inside a block is the source's, or shuffled *within* the block
  - repeated prompts (after normalisation) inside a block are dropped
  - items that don't fit the block's shape are dropped
  - a short block is kept and reported as a fidelity warning
  - zero items overall is ``NoQuestionsAvailable``

``UpstreamUnavailable`` raised by the source is not caught here: a start that
cannot reach the source fails cleanly before anything is persisted.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

from attempt_engine.core.errors import NoQuestionsAvailable
from attempt_engine.db.models import QuestionTypeEnum
from attempt_engine.services.question_source import (
    BlockSpec,
    GeneratedQuestion,
    QuestionSource,
)

logger = logging.getLogger(__name__)

_MULTI_SPACE = re.compile(r"\s+")
_TRAILING_PUNCT = re.compile(r"[\s?.!:;,]+$")


def normalise_prompt(text: str) -> str:
    """Key used to detect repeated prompts within a block."""
    t = _MULTI_SPACE.sub(" ", text.casefold()).strip()
    return _TRAILING_PUNCT.sub("", t)


def option_keys(count: int) -> list[str]:
    """Opaque option keys for single-choice questions: A, B, C …"""
    return [chr(65 + i) for i in range(count)]


@dataclass(frozen=True)
class SnapshotItem:
    position: int
    block_position: int
    question_type: QuestionTypeEnum
    prompt: str
    options: list[Any]
    canonical_answer: Any
    positive_marks: Decimal
    negative_marks: Decimal
    duration_seconds: int


@dataclass
class SnapshotResult:
    items: list[SnapshotItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_duration(self) -> int:
        return sum(item.duration_seconds for item in self.items)


# ── Shape checks ──────────────────────────────────────────────────────────────


def _is_pair_list(value: Any) -> bool:
    return isinstance(value, list) and all(
        isinstance(pair, (list, tuple)) and len(pair) == 2 for pair in value
    )


def _fits_block(question: GeneratedQuestion, block: BlockSpec) -> bool:
    answer = question.canonical_answer
    if answer is None:
        return False

    if block.question_type is QuestionTypeEnum.SINGLE_CHOICE:
        count = block.num_options or len(question.options)
        if len(question.options) != count or count < 2:
            return False
        return str(answer).strip() in option_keys(count)

    if block.question_type is QuestionTypeEnum.TRUE_FALSE:
        return str(answer).strip() in ("True", "False") or isinstance(answer, bool)

    if block.question_type is QuestionTypeEnum.MATCHING:
        if not _is_pair_list(answer) or not answer:
            return False
        if block.num_first_side and len(answer) != block.num_first_side:
            return False
        return True

    # short answer
    return isinstance(answer, str) and bool(answer.strip())


def _canonical(question: GeneratedQuestion, block: BlockSpec) -> Any:
    answer = question.canonical_answer
    if block.question_type is QuestionTypeEnum.TRUE_FALSE and isinstance(answer, bool):
        return "True" if answer else "False"
    if block.question_type in (QuestionTypeEnum.SINGLE_CHOICE, QuestionTypeEnum.TRUE_FALSE):
        return str(answer).strip()
    if block.question_type is QuestionTypeEnum.MATCHING:
        return [list(pair) for pair in answer]
    return answer


# ── Builder ───────────────────────────────────────────────────────────────────


class SnapshotBuilder:
    def __init__(self, source: QuestionSource, rng: random.Random | None = None) -> None:
        self._source = source
        self._rng = rng or random.Random()

    def _materialize_block(
        self, block: BlockSpec, language: str, warnings: list[str]
    ) -> list[GeneratedQuestion]:
        returned = self._source.generate_questions(block, language)

        seen: set[str] = set()
        kept: list[GeneratedQuestion] = []
        duplicates = malformed = 0
        for question in returned:
            if len(kept) >= block.question_count:
                break
            key = normalise_prompt(question.prompt)
            if key in seen:
                duplicates += 1
                continue
            if not _fits_block(question, block):
                malformed += 1
                continue
            seen.add(key)
            kept.append(question)

        if duplicates:
            logger.warning(
                "Block %d: dropped %d duplicate prompt(s)", block.position, duplicates
            )
        if malformed:
            warnings.append(
                f"block {block.position}: dropped {malformed} malformed "
                f"{block.question_type.value} question(s)"
            )
        if len(kept) < block.question_count:
            warnings.append(
                f"block {block.position}: requested {block.question_count} "
                f"{block.question_type.value} question(s), got {len(kept)}"
            )
        return kept

    def build(
        self,
        blocks: Sequence[BlockSpec],
        language: str,
        *,
        shuffle: bool = False,
    ) -> SnapshotResult:
        result = SnapshotResult()
        position = 0

        for block in sorted(blocks, key=lambda b: b.position):
            questions = self._materialize_block(block, language, result.warnings)
            if shuffle:
                self._rng.shuffle(questions)
            for question in questions:
                result.items.append(
                    SnapshotItem(
                        position=position,
                        block_position=block.position,
                        question_type=block.question_type,
                        prompt=question.prompt,
                        options=list(question.options),
                        canonical_answer=_canonical(question, block),
                        positive_marks=block.positive_marks,
                        negative_marks=block.negative_marks,
                        duration_seconds=block.duration_per_question,
                    )
                )
                position += 1

        for warning in result.warnings:
            logger.warning("Snapshot fidelity: %s", warning)

        if not result.items:
            raise NoQuestionsAvailable(
                "No questions could be generated for this assessment",
                warnings=result.warnings,
            )
        return result
