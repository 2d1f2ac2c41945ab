"""Reading generation: one LLM call per completed draw, with offline fallback."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from openai import OpenAI

from .config import Settings
from .errors import GenerationError
from .models import DrawSession, ReadingArtifact, ReadingMeta
from .reading import DISCLAIMER, image_prompt, reading_cards, template_reading

log = logging.getLogger("cosmo_tarot.ai")

LLMCall = Callable[[str], str]

SYSTEM_PROMPT = (
    "You are a Lenormand reader. Always return valid JSON. Never include markdown formatting in JSON."
)


def build_prompt(session: DrawSession) -> str:
    cards = reading_cards(session)
    sequence = "\n".join(f"{c.position}. {c.display_name}" for c in cards)
    cosmic = session.cosmic
    return f"""Interpret the following Lenormand card sequence as a combined, relational sequence (not individual card meanings).
This is for reflection and entertainment only. It is NOT a prediction.

Question: "{session.input.question}"
Name: {session.input.name}
Cosmic context: {cosmic.descriptor} (metaphor: the {cosmic.metaphor})

Card sequence:
{sequence}

Write exactly 4 pages:
1. Frame & Theme (70-90 words): synthesis of the whole sequence and the cosmic tone. Reference cards positionally (opening/pivot/final).
2. Sequence Unfolding (110-140 words): chain logic (A -> B -> C...), how the cards connect and influence each other.
3. Implications & Tension (90-110 words): what is forming, reinforcing or conflicting. Use "suggests", "indicates", "points to".
4. Interpretation & Direction (60-80 words): declarative, non-predictive conclusion. Reference the cosmic metaphor subtly.

Rules:
- No medical/legal/financial directives
- No guarantees or predictions ("will happen", "must", "fate says")
- shareText is a 2-3 sentence synthesis of page 4, ASCII only, no emojis

Return JSON only:
{{"pages": ["...", "...", "...", "..."], "shareText": "..."}}"""


class OpenAIReadingLLM:
    """Callable wrapper around the OpenAI chat completions API (JSON mode)."""

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        self._client = client

    def _get_client(self) -> OpenAI:
        # Built lazily so a missing key fails the call, not app startup.
        if self._client is None:
            self._client = OpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def __call__(self, prompt: str) -> str:
        response = self._get_client().chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.7,
        )
        content = response.choices[0].message.content
        if not content:
            raise GenerationError("empty LLM response")
        return content


def validate_artifact(artifact: ReadingArtifact, ascii_only: bool = True) -> None:
    """Raise GenerationError unless the artifact is safe to store."""
    if len(artifact.pages) != 4:
        raise GenerationError(f"reading must have exactly 4 pages, got {len(artifact.pages)}")
    if ascii_only and not artifact.share_text.isascii():
        raise GenerationError("shareText must be ASCII")


class ReadingGenerator:
    """Produces the reading artifact for a fully revealed session.

    With no LLM configured the deterministic template is used. When an LLM
    call fails or returns something invalid, the template is used instead,
    unless `hard_fail` is set, in which case GenerationError is raised and
    the caller leaves the session retryable.
    """

    def __init__(
        self,
        llm: Optional[LLMCall] = None,
        hard_fail: bool = False,
        share_text_ascii_only: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.llm = llm
        self.hard_fail = hard_fail
        self.share_text_ascii_only = share_text_ascii_only
        self._clock = clock

    def generate(self, session: DrawSession) -> ReadingArtifact:
        now = self._clock()
        if self.llm is None:
            return template_reading(session, now)

        try:
            artifact = self._generate_llm(session, now)
        except Exception as e:
            if self.hard_fail:
                raise GenerationError(f"reading generation failed: {e}") from e
            log.warning("LLM reading failed for session %s, using template: %s", session.session_id, e)
            return template_reading(session, now)
        return artifact

    def _generate_llm(self, session: DrawSession, now: float) -> ReadingArtifact:
        raw = self.llm(build_prompt(session))
        data: Dict[str, Any] = json.loads(raw)
        if not isinstance(data, dict):
            raise GenerationError("LLM output is not a JSON object")

        pages = data.get("pages")
        if not isinstance(pages, list) or not all(isinstance(p, str) for p in pages):
            raise GenerationError("LLM output invalid: pages must be a list of strings")
        share_text = data.get("shareText")
        if not isinstance(share_text, str):
            raise GenerationError("LLM output invalid: shareText must be a string")

        cards = reading_cards(session)
        # Length and blank-page checks happen in the model validators.
        artifact = ReadingArtifact(
            meta=ReadingMeta(
                session_id=session.session_id,
                created_at=now,
                source="llm",
                disclaimer=DISCLAIMER,
            ),
            cards=cards,
            cosmic=session.cosmic,
            pages=tuple(p.strip() for p in pages),
            share_text=share_text.strip(),
            image_prompt=image_prompt(session, cards),
        )
        validate_artifact(artifact, ascii_only=self.share_text_ascii_only)
        return artifact


def build_reading_generator(settings: Settings, clock: Callable[[], float] = time.time) -> ReadingGenerator:
    llm = OpenAIReadingLLM(settings) if settings.llm_enabled else None
    return ReadingGenerator(
        llm=llm,
        hard_fail=settings.reading_hard_fail,
        share_text_ascii_only=settings.share_text_ascii_only,
        clock=clock,
    )
