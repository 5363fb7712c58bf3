"""OpenAI-compatible chat-completions provider for market drafts."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

import openai
import structlog

from crowdcast.ai.drafts import DEFAULT_END_DAYS, DraftProviderError

log = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are an AI assistant that reformulates casual event ideas into clear, verifiable prediction market questions.

IMPORTANT: Today's date is {today}. All suggested end dates MUST be in the future (after {today}).

Your task:
1. Convert the user's casual idea into a specific, verifiable question
2. Suggest a realistic end date (default: {default_end}, but adjust based on context - could be hours, days, weeks, or months)
3. Categorize the prediction (Politics, Technology, Sports, Crypto, Finance, Science, Community, Personal, Entertainment, Other)
4. Generate 2-4 relevant tags
5. Suggest a resolution method (Community Vote, Verified News Source, Chainlink Oracle, Social Media Post, etc.)
6. Provide 2-4 clear outcome options (usually Yes/No, but can be multiple choice)

Return only valid JSON matching this exact structure:
{{
  "title": "Will...",
  "description": "Clear description of what constitutes each outcome",
  "category": "one of the categories above",
  "tags": ["tag1", "tag2", "tag3"],
  "suggestedEndDate": "ISO date string (MUST be after {today})",
  "resolutionMethod": "How this will be resolved",
  "options": ["Option 1", "Option 2"]
}}"""


class OpenAIDraftProvider:
    """Calls chat.completions with a JSON response format and returns the parsed object."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        temperature: float = 0.7,
        default_end_days: int = DEFAULT_END_DAYS,
        client: Any = None,
    ) -> None:
        kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        self.client = client or openai.OpenAI(**kwargs)
        self.model = model
        self.temperature = temperature
        self.default_end_days = default_end_days

    def generate(self, free_text: str, today: datetime) -> dict[str, Any]:
        system = SYSTEM_PROMPT.format(
            today=today.date().isoformat(),
            default_end=(today + timedelta(days=self.default_end_days)).isoformat(),
        )
        user = f'User\'s event idea: "{free_text}"\n\nTransform this into a prediction market. Be specific and verifiable.'
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            raise DraftProviderError(str(e)) from e
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise DraftProviderError("empty completion")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise DraftProviderError(f"invalid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise DraftProviderError("completion is not a JSON object")
        log.debug("draft_generated", model=self.model)
        return parsed
