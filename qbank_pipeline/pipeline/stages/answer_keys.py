"""LLM resolution of answer keys that the quality gate replaced by the default key."""

import asyncio

import structlog

from qbank_pipeline.llm import LLMChainError, LLMService, RateLimitedError
from qbank_pipeline.models import OPTION_LETTERS, AnswerKeyOutcome, QuestionRecord, parse_answer_letter
from qbank_pipeline.storage import PersistenceError, QuestionRepository

logger = structlog.get_logger(__name__)


def build_answer_key_item(index: int, question: QuestionRecord) -> dict:
    item = {
        "index": index,
        "stem": question.stem,
        "option_a": question.option_a,
        "option_b": question.option_b,
        "option_c": question.option_c,
        "option_d": question.option_d,
    }
    if question.option_e:
        item["option_e"] = question.option_e
    return item


def _parse_index(item: dict) -> int | None:
    try:
        return int(item.get("index"))
    except (TypeError, ValueError):
        return None


class AnswerKeyResolver:
    """Ask the LLM for the real key of questions stored with a defaulted one.

    Only ``correct_option`` is written, and only when the answer names a
    present alternative. Unresolved questions keep their default key and
    their ``answer_key_normalized`` marker, so a later pass can retry them.
    """

    def __init__(self, repository: QuestionRepository, service: LLMService, batch_size: int = 10):
        self.repository = repository
        self.service = service
        self.batch_size = max(1, batch_size)

    async def resolve_pending(
        self,
        document_ids: list[int] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[AnswerKeyOutcome]:
        """Resolve every stored question still marked with a defaulted key."""
        questions = await asyncio.to_thread(self.repository.list_normalized_key_questions, document_ids)
        return await self.resolve(questions, cancel_event)

    async def resolve(
        self,
        questions: list[QuestionRecord],
        cancel_event: asyncio.Event | None = None,
    ) -> list[AnswerKeyOutcome]:
        outcomes: list[AnswerKeyOutcome] = []
        batches = [questions[i:i + self.batch_size] for i in range(0, len(questions), self.batch_size)]

        for i, batch in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("answer_key_resolution_cancelled", remaining_batches=len(batches) - i)
                outcomes.extend(self._unresolved(q, "cancelled") for q in batch)
                continue
            outcomes.extend(await self.resolve_batch(batch))

        logger.info(
            "answer_key_resolution_complete",
            questions=len(questions),
            resolved=sum(1 for o in outcomes if o.resolved),
            changed=sum(1 for o in outcomes if o.changed),
        )
        return outcomes

    def _unresolved(self, question: QuestionRecord, error: str) -> AnswerKeyOutcome:
        logger.warning("answer_key_unresolved", question_id=question.id, error=error)
        return AnswerKeyOutcome(
            question_id=question.id,
            previous_option=question.correct_option,
            error=error,
        )

    async def resolve_batch(self, batch: list[QuestionRecord]) -> list[AnswerKeyOutcome]:
        """Resolve one batch; a failed call leaves the whole batch unresolved."""
        if not self.service.is_available():
            return [self._unresolved(q, "LLM service unavailable") for q in batch]

        items = [build_answer_key_item(i, q) for i, q in enumerate(batch)]
        try:
            answers = await self.service.resolve_answer_keys(items)
        except (LLMChainError, RateLimitedError) as e:
            logger.error("answer_key_batch_failed", size=len(batch), error=str(e))
            return [self._unresolved(q, f"answer key call failed: {e}") for q in batch]

        by_index = {}
        for item in answers:
            index = _parse_index(item)
            if index is not None:
                by_index.setdefault(index, item)

        outcomes = []
        for i, question in enumerate(batch):
            answer = by_index.get(i)
            if answer is None:
                outcomes.append(self._unresolved(question, "no answer returned for this item"))
                continue
            outcomes.append(await self._apply(question, answer.get("correct_option")))
        return outcomes

    async def _apply(self, question: QuestionRecord, raw_answer) -> AnswerKeyOutcome:
        letter = parse_answer_letter(raw_answer)
        if letter is None:
            return self._unresolved(question, f"no letter in answer {raw_answer!r}")

        option_text = question.options[OPTION_LETTERS.index(letter)]
        if not option_text or not option_text.strip():
            return self._unresolved(question, f"answer {letter} has no alternative")

        try:
            await asyncio.to_thread(self.repository.set_answer_key, question.id, letter)
        except PersistenceError as e:
            return self._unresolved(question, f"could not write answer key: {e}")

        logger.info(
            "answer_key_resolved",
            question_id=question.id,
            previous=question.correct_option,
            resolved=letter,
        )
        return AnswerKeyOutcome(
            question_id=question.id,
            previous_option=question.correct_option,
            resolved_option=letter,
        )
