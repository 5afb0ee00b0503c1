"""LLM drafting of outreach emails and deliverable specs for a single prospect."""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from cryptoprospect.config import Settings, get_settings
from cryptoprospect.errors import ConfigError
from cryptoprospect.models import Prospect
from cryptoprospect.schemas import DeliverableSpec, EmailDraft
from cryptoprospect.utils import json_parse

log = logging.getLogger(__name__)

PLACEHOLDER = "-"


class LLMCallError(Exception):
    """LLM call failed or returned unparseable output."""
    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class LLMClient:
    """Async LLM client for Anthropic and OpenAI-compatible providers, JSON in and out."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.provider = settings.llm_provider
        self.model = settings.llm_model
        self._settings = settings
        self._client: Any = None
        self._init_client()

    def _init_client(self) -> None:
        s = self._settings
        if self.provider == "anthropic":
            import anthropic
            if not s.anthropic_api_key:
                raise ConfigError("ANTHROPIC_API_KEY not configured")
            self.model = self.model or "claude-sonnet-4-20250514"
            self._client = anthropic.AsyncAnthropic(api_key=s.anthropic_api_key)
        elif self.provider in ("openai", "openai_compatible"):
            import openai
            if not (s.openai_api_key or s.openai_base_url):
                raise ConfigError("OPENAI_API_KEY not configured")
            self.model = self.model or "gpt-4o-mini"
            kwargs: dict[str, Any] = {}
            if s.openai_api_key:
                kwargs["api_key"] = s.openai_api_key
            if s.openai_base_url:
                kwargs["base_url"] = s.openai_base_url
            self._client = openai.AsyncOpenAI(**kwargs)
        else:
            raise ConfigError(f"Unknown LLM provider: {self.provider!r}")

    async def call(self, system: str, user: str) -> dict[str, Any]:
        """Send system+user message to the LLM, return parsed JSON."""
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=1024,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                text = response.content[0].text.strip()
                m = re.search(r'```(?:json)?\s*(\{.*\})\s*```', text, re.DOTALL)
                if m:
                    text = m.group(1)
            else:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    max_tokens=1024,
                    response_format={"type": "json_object"},
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": user},
                    ],
                )
                text = response.choices[0].message.content or "{}"
        except Exception as exc:
            raise LLMCallError(f"LLM API call failed: {exc}", retryable=True) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise LLMCallError(
                f"LLM returned invalid JSON: {text[:200]}", retryable=False,
            ) from exc


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

EMAIL_SYSTEM = (
    "You are a freelance financial dashboard consultant. "
    "Write a short, professional cold outreach email. "
    'Respond with JSON only: {"email_body": "...", "subject": "..."}.'
)

SPEC_SYSTEM = (
    "You are a freelance financial dashboard consultant. Output structured deliverable specs. "
    'Respond with JSON only: {"tech_stack": "...", "hours": "...", '
    '"price_range": "...", "proof_of_work_paragraph": "..."}.'
)


def build_context(prospect: Prospect) -> str:
    """Name, category, TVL in $M and the positive pain signals, one per line."""
    signals = [
        f"- {s.get('key')}: {s.get('explanation')}"
        for s in json_parse(prospect.pain_signals_json, [])
        if (s.get("points") or 0) > 0
    ]
    lines = [
        f"Project: {prospect.name}",
        f"Category: {prospect.category}",
        f"TVL: ${(prospect.tvl or 0) / 1e6:.2f}M",
        "Pain signals:",
        *signals,
    ]
    return "\n".join(lines)


def _text(raw: dict[str, Any], key: str, default: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) and value.strip() else default


async def generate_email_draft(prospect: Prospect, client: LLMClient) -> EmailDraft:
    user = (
        "Using this prospect context, write ONE short outreach email (2-4 sentences). The email should:\n"
        "1. Cite one specific pain signal from the list that fits this project.\n"
        '2. Include a placeholder like "[Link to 30-min proof-of-work: e.g. Figma wireframe / '
        'Loom / data insight]" for the hook.\n'
        "3. End with a soft pitch for a full interactive dashboard.\n\n"
        f"Prospect context:\n{build_context(prospect)}"
    )
    raw = await client.call(EMAIL_SYSTEM, user)
    subject = raw.get("subject")
    return EmailDraft(
        email_body=_text(raw, "email_body", "Could not generate draft."),
        subject=subject if isinstance(subject, str) and subject.strip() else None,
    )


async def generate_deliverable_spec(prospect: Prospect, title: str, client: LLMClient) -> DeliverableSpec:
    user = (
        f"Prospect context:\n{build_context(prospect)}\n\n"
        f"Deliverable type: {title}\n\n"
        "Suggest: (1) tech stack, (2) estimated build hours, (3) suggested price range, "
        '(4) one short paragraph (2-4 sentences) for a "proof of work" email template '
        "personalized to this project and deliverable."
    )
    raw = await client.call(SPEC_SYSTEM, user)
    return DeliverableSpec(
        tech_stack=_text(raw, "tech_stack", PLACEHOLDER),
        hours=str(raw["hours"]) if isinstance(raw.get("hours"), (int, float)) else _text(raw, "hours", PLACEHOLDER),
        price_range=_text(raw, "price_range", PLACEHOLDER),
        proof_of_work_paragraph=_text(raw, "proof_of_work_paragraph", ""),
    )
