"""
Query Answerer

Answers questions from a requester-scoped view of the knowledge base.

Key principle: the LLM only ever sees the rendered QueryScope, never the
knowledge base itself. Anything the requester (and everyone else present)
may not see is withheld before the prompt is built.

Long threads keep their newest messages in full; older scoped messages are
summarized per request by the ConversationSummarizer.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..common.config import ConfidantConfig
from ..common.llm_client import TextGenerator
from ..common.schemas import (
    KnowledgeEntry,
    Participant,
    QueryScope,
    ThreadSummary,
    render_knowledge,
    render_scope,
    render_summaries,
)
from ..memory.knowledge_base import KnowledgeBase
from ..memory.ledger import ParticipantLike, as_participant
from .summarizer import ConversationSummarizer

logger = logging.getLogger("confidant.retriever.answerer")


@dataclass
class ScopedAnswer:
    """Answer built from a privacy-scoped context"""
    answer: str
    confidence: float  # 0.0 to 1.0
    sources: List[Dict[str, Any]]
    privacy_restricted: bool = False
    restricted_info: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


PRIVACY_SYSTEM_PROMPT = """You are {name}, an AI coordination assistant. You help people by answering questions about their email conversations, tracking decisions and commitments, and maintaining shared knowledge.

IMPORTANT PRIVACY RULES:
- You can ONLY reference information that ALL current participants in this conversation have access to
- If you cannot fully answer a question due to privacy constraints, you must:
  1. Provide whatever information you CAN safely share
  2. Explicitly state that you cannot provide more information
  3. Name the specific participant(s) whose presence prevents full disclosure
- NEVER leak confidential information to unauthorized participants

When answering questions:
- Be concise and factual
- Cite specific emails or speech acts when relevant
- If you're not sure about something, say so - don't guess
- Focus on reliability over speculation"""


QUESTION_PROMPT = """Current conversation participants: {participants}

{restriction_note}CONVERSATION HISTORY YOU MAY USE:
{context}
{referenced}
Question from {requester}: {question}

Your Answer:"""


FALLBACK_TEMPLATE = """## Context for: "{question}"

{count} message(s) and {act_count} speech act(s) are visible to {participants}:

{context}

---
**Note**: This is a direct listing without LLM synthesis.
Configure an LLM provider for natural language answers.
"""


NO_CONTEXT_ANSWER = "I don't have any conversation history that I can share with everyone here."


class QueryAnswerer:
    """
    Answers questions with a TextGenerator over a scoped context.

    Falls back to a plain listing of the scope if no LLM is available or
    generation fails.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        generator: Optional[TextGenerator] = None,
        assistant_name: str = "Confidant",
        max_tokens: int = 1024,
        summarizer: Optional[ConversationSummarizer] = None,
    ):
        self._kb = knowledge_base
        self._generator = generator
        self._assistant_name = assistant_name
        self._max_tokens = max_tokens
        self._summarizer = summarizer or ConversationSummarizer(generator)

    @classmethod
    def from_config(
        cls,
        knowledge_base: KnowledgeBase,
        config: ConfidantConfig,
        generator: Optional[TextGenerator] = None,
    ) -> "QueryAnswerer":
        return cls(
            knowledge_base,
            generator,
            assistant_name=config.assistant.name,
            summarizer=ConversationSummarizer(generator, recent_window=config.context.recent_window),
        )

    @property
    def has_llm(self) -> bool:
        return self._generator is not None and self._generator.is_available

    def answer(
        self,
        question: str,
        requester: ParticipantLike,
        audience: Iterable[ParticipantLike] = (),
        thread_ids: Optional[Iterable[str]] = None,
        knowledge: Iterable[KnowledgeEntry] = (),
    ) -> ScopedAnswer:
        """
        Answer `question` for `requester` with `audience` present.

        Args:
            question: Natural-language question
            requester: Who is asking
            audience: Everyone else who will read the answer
            thread_ids: Restrict to these threads (None = all)
            knowledge: Stored knowledge entries; only those everyone present
                may hear about reach the prompt

        Returns:
            ScopedAnswer
        """
        if thread_ids is not None:
            thread_ids = list(thread_ids)
        audience = [as_participant(p) for p in audience]
        scope = self._kb.assemble(requester, thread_ids=thread_ids, audience=audience)
        knowledge = self._kb.ledger.filter_knowledge_entries(knowledge, self._group(scope))
        restricted_info = self._restricted_info(scope, thread_ids)
        privacy_restricted = self._is_restricted(scope, thread_ids)

        if scope.is_empty and not knowledge:
            return ScopedAnswer(
                answer=NO_CONTEXT_ANSWER,
                confidence=0.0,
                sources=[],
                privacy_restricted=privacy_restricted,
                restricted_info=restricted_info,
                warnings=["No accessible conversation history"],
            )

        if self.has_llm:
            try:
                return self._answer_with_llm(question, scope, knowledge, privacy_restricted, restricted_info)
            except Exception as e:
                logger.warning("LLM answer failed: %s", e)

        return self._answer_fallback(question, scope, knowledge, privacy_restricted, restricted_info)

    # ------------------------------------------------------------------

    @staticmethod
    def _group(scope: QueryScope) -> List[Participant]:
        return [scope.requester, *scope.audience]

    @staticmethod
    def _names(participants: List[Participant]) -> str:
        return ", ".join(p.label for p in participants)

    def _is_restricted(self, scope: QueryScope, thread_ids: Optional[List[str]]) -> bool:
        threads = self._kb.threads(thread_ids)
        total_messages = sum(len(t.messages) for t in threads)
        total_acts = sum(len(self._kb.index.get_by_thread(t.thread_id)) for t in threads)
        return len(scope.visible_messages) < total_messages or len(scope.visible_acts) < total_acts

    def _restricted_info(self, scope: QueryScope, thread_ids: Optional[List[str]]) -> Optional[str]:
        """Name audience members whose presence withholds what the requester could see alone"""
        if not scope.audience:
            return None
        alone = self._kb.assemble(scope.requester, thread_ids=thread_ids)
        withheld = alone.visible_messages - scope.visible_messages
        withheld_acts = alone.visible_acts - scope.visible_acts
        if not withheld and not withheld_acts:
            return None

        ledger = self._kb.ledger
        blocking = [
            p for p in scope.audience
            if any(not ledger.has_access_to_message_body(p, mid) for mid in withheld)
            or any(not ledger.has_access_to_speech_act(p, aid) for aid in withheld_acts)
        ]
        if not blocking:
            return None
        return f"Some information has been withheld due to the presence of: {self._names(blocking)}"

    def _context(self, scope: QueryScope, knowledge: List[KnowledgeEntry]) -> Tuple[str, List[ThreadSummary]]:
        """Summaries of older messages, the recent scope, then stored knowledge"""
        recent, summaries = self._summarizer.condense(scope)
        parts = [render_summaries(summaries), render_scope(recent), render_knowledge(knowledge)]
        return "\n\n".join(p for p in parts if p), summaries

    @staticmethod
    def _warnings(scope: QueryScope, summaries: List[ThreadSummary]) -> List[str]:
        warnings = []
        if summaries:
            count = sum(len(s.message_ids) for s in summaries)
            warnings.append(f"{count} older message(s) summarized")
        if scope.referenced_messages:
            warnings.append(f"{len(scope.referenced_messages)} referenced message(s) withheld")
        return warnings

    @staticmethod
    def _sources(scope: QueryScope, knowledge: List[KnowledgeEntry]) -> List[Dict[str, Any]]:
        sources: List[Dict[str, Any]] = []
        for thread in scope.threads:
            sources.extend(
                {"type": "message", "id": m.id, "thread_id": thread.thread_id, "subject": m.subject}
                for m in thread.messages
            )
            sources.extend(
                {"type": "speech_act", "id": a.id, "thread_id": thread.thread_id, "kind": a.kind.value}
                for a in thread.acts
            )
        sources.extend(
            {"type": "knowledge", "id": e.id, "category": e.category.value, "title": e.title}
            for e in knowledge
        )
        return sources

    @staticmethod
    def _calculate_confidence(scope: QueryScope) -> float:
        acts = scope.acts
        if acts:
            return round(sum(a.confidence for a in acts) / len(acts), 2)
        return 0.7 if scope.messages else 0.3

    def _answer_with_llm(
        self,
        question: str,
        scope: QueryScope,
        knowledge: List[KnowledgeEntry],
        privacy_restricted: bool,
        restricted_info: Optional[str],
    ) -> ScopedAnswer:
        context, summaries = self._context(scope, knowledge)
        restriction_note = ""
        if restricted_info:
            restriction_note = f"NOTE: {restricted_info}. Say so in your answer.\n\n"

        referenced = ""
        if scope.referenced_messages:
            referenced = (
                "\nMessages referenced by the facts above whose text you do not have: "
                f"{', '.join(sorted(scope.referenced_messages))}\n"
            )

        prompt = QUESTION_PROMPT.format(
            participants=self._names(self._group(scope)),
            restriction_note=restriction_note,
            context=context,
            referenced=referenced,
            requester=scope.requester.label,
            question=question,
        )
        answer = self._generator.generate(
            prompt,
            system=PRIVACY_SYSTEM_PROMPT.format(name=self._assistant_name),
            max_tokens=self._max_tokens,
            temperature=0.3,
        )

        return ScopedAnswer(
            answer=answer,
            confidence=self._calculate_confidence(scope),
            sources=self._sources(scope, knowledge),
            privacy_restricted=privacy_restricted,
            restricted_info=restricted_info,
            warnings=self._warnings(scope, summaries),
        )

    def _answer_fallback(
        self,
        question: str,
        scope: QueryScope,
        knowledge: List[KnowledgeEntry],
        privacy_restricted: bool,
        restricted_info: Optional[str],
    ) -> ScopedAnswer:
        context, summaries = self._context(scope, knowledge)
        answer = FALLBACK_TEMPLATE.format(
            question=question,
            count=len(scope.messages),
            act_count=len(scope.acts),
            participants=self._names(self._group(scope)),
            context=context,
        )
        if restricted_info:
            answer += f"\n{restricted_info}\n"

        return ScopedAnswer(
            answer=answer,
            confidence=self._calculate_confidence(scope),
            sources=self._sources(scope, knowledge),
            privacy_restricted=privacy_restricted,
            restricted_info=restricted_info,
            warnings=["LLM not available - showing scoped context", *self._warnings(scope, summaries)],
        )
