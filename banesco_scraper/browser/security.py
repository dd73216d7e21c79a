"""Security question resolution for Banesco Online.

Banesco may ask up to four personal questions after the user name step.
Answers are configured as ``keyword:answer`` pairs; a question is answered
by the first configured keyword found inside the question text.
"""

from collections.abc import Mapping
from typing import Any

import structlog

from banesco_scraper.models import QuestionSlot
from banesco_scraper.parsing import normalize_text, parse_security_config

logger = structlog.get_logger(__name__)


class SecurityQuestionResolver:
    """Maps on-screen question text to configured answers.

    Keywords are normalized once at construction (case-folded, accents and
    punctuation removed). Configuration order is kept and decides which
    answer wins when several keywords occur in the same question.

    Usage:
        resolver = SecurityQuestionResolver("mascota:firulais,madre:maria")
        resolver.resolve("¿Nombre de su mascota?")  # -> "firulais"
    """

    def __init__(self, config: str | Mapping[str, str] | None = None) -> None:
        """Initialize the resolver.

        Args:
            config: Either the raw ``keyword:answer,...`` string or an
                ordered keyword to answer mapping.
        """
        pairs = config if isinstance(config, Mapping) else parse_security_config(config)

        self._answers: dict[str, str] = {}
        for keyword, answer in pairs.items():
            normalized = normalize_text(keyword)
            if not normalized:
                logger.warning("security_keyword_empty_after_normalization")
                continue
            if normalized in self._answers:
                logger.warning("security_keyword_duplicated", keyword=normalized)
                continue
            self._answers[normalized] = answer

        logger.debug("security_resolver_configured", keywords=len(self._answers))

    def __len__(self) -> int:
        return len(self._answers)

    @property
    def keywords(self) -> list[str]:
        return list(self._answers)

    def resolve(self, question_text: str | None) -> str | None:
        """Return the answer of the first keyword contained in the question."""
        question = normalize_text(question_text)
        if not question:
            return None

        for keyword, answer in self._answers.items():
            if keyword in question:
                logger.debug("security_question_matched", keyword=keyword)
                return answer

        logger.debug("security_question_unmatched", question=question)
        return None

    async def handle(self, scope: Any, slots: list[QuestionSlot]) -> bool:
        """Answer every visible question slot that has a configured answer.

        Each slot is attempted independently: a missing label, an unknown
        question or a failed fill skips that slot only.

        Args:
            scope: PageSurface holding the question form.
            slots: Up to four fixed label/input positions.

        Returns:
            True if at least one slot was answered and verified.
        """
        if not self._answers:
            logger.warning("security_questions_without_configuration")
            return False

        answered = 0
        seen = 0
        for position, slot in enumerate(slots[:4], start=1):
            label = await scope.query_selector(slot.label_ref)
            if label is None or not await scope.is_visible(label):
                continue

            seen += 1
            question = await scope.text_of(label)
            answer = self.resolve(question)
            if answer is None:
                logger.warning("security_question_no_answer", slot=position)
                continue

            try:
                if await self._fill_slot(scope, slot, answer):
                    answered += 1
                    logger.info("security_question_answered", slot=position)
                else:
                    logger.warning("security_answer_not_applied", slot=position)
            except Exception as e:
                logger.warning("security_answer_fill_failed", slot=position, error=str(e))

        logger.info("security_questions_handled", seen=seen, answered=answered)
        return answered > 0

    async def _fill_slot(self, scope: Any, slot: QuestionSlot, answer: str) -> bool:
        field = await scope.query_selector(slot.input_ref)
        if field is None:
            return False
        if not await scope.is_visible(field) or not await scope.is_enabled(field):
            return False

        await scope.fill(field, answer)
        return await scope.value_of(field) == answer


def question_slots(raw: list[dict[str, str]]) -> list[QuestionSlot]:
    """Build QuestionSlot entries from the selectors.yaml ``question_slots`` list."""
    return [QuestionSlot(label_ref=item["label"], input_ref=item["input"]) for item in raw]
