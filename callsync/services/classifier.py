"""
Transcript Classifier

Builds bounded-length prompts from a transcript, sends them to an
OpenRouter-compatible chat completions endpoint and validates the JSON
the model returns against the strict response schemas.

Any model that returns the CallAnalysis JSON contract can be used; the
keyword heuristic in keyword_classifier exposes the same interface.

Author: CallSync Team
Date: 2026-01-12
"""

import json
import logging
import re
from typing import Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from callsync.common.config import settings
from callsync.common.records import TranscriptRecord
from callsync.common.schemas import CallAnalysis, ProfessionalismAssessment

logger = logging.getLogger("classifier")

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class ClassifierError(Exception):
    """The classifier endpoint failed or returned no content."""


class ResponseParseError(ClassifierError):
    """The classifier's output is not valid JSON for the expected schema."""


class PermanentAnalysisError(Exception):
    """A transcript that can never be analyzed; retrying is pointless."""


ANALYSIS_PROMPT = """Analyze this customer service call transcript and provide structured insights:

CALL INFORMATION:
Agent: {agent}
Department: {department}
Disposition: {disposition}
Duration: {duration} seconds

LAST {chars} CHARACTERS OF CONVERSATION:
{excerpt}

Please analyze and return a JSON object with these fields:

{{
  "agentSentiment": "positive|neutral|negative",
  "agentSentimentScore": 0.0-1.0,
  "agentSentimentReason": "brief explanation",

  "customerSentiment": "positive|neutral|negative",
  "customerSentimentScore": 0.0-1.0,
  "customerSentimentReason": "brief explanation",

  "aiDiscoveredTopic": "specific topic discovered from content",
  "aiDiscoveredSubcategory": "more granular subcategory",
  "topicConfidence": 0.0-1.0,

  "keyIssues": ["issue1", "issue2"],
  "resolution": "brief resolution status",
  "tags": ["tag1", "tag2", "tag3"]
}}

Focus on:
1. Agent performance: Was the agent helpful, professional, responsive?
2. Customer satisfaction: Is the customer satisfied, frustrated, neutral?
3. True topic: What is this REALLY about? (may be different from disposition)
4. Actionable insights: What are the key issues and resolution?

Return ONLY valid JSON, no other text."""


PROFESSIONALISM_PROMPT = """You are evaluating an agent's PROFESSIONALISM in a customer service call.

IMPORTANT: We are NOT judging the agent by the customer's mood - customers may come in frustrated. We ARE judging:
1. Did the AGENT behave professionally?
2. Did the AGENT cause or worsen customer frustration?
3. Did the AGENT handle a difficult situation well?

TRANSCRIPT:
{excerpt}

Analyze ONLY the agent's behavior and return JSON:
{{
  "agentProfessionalism": <1-5, 5=exemplary professional, 1=unprofessional>,
  "agentCausedFrustration": <true if agent made customer MORE upset, false otherwise>,
  "deEscalationSkill": <1-5, how well agent calmed upset customer, "N/A" if customer wasn't upset>,
  "communicationClarity": <1-5, clear explanations, no jargon confusion>,
  "activeListening": <1-5, addressed customer concerns, didn't ignore issues>,
  "empathy": <1-5, acknowledged feelings, showed understanding>,
  "customerStartMood": "<frustrated/neutral/positive - how customer started>",
  "customerEndMood": "<frustrated/neutral/positive - how customer ended>",
  "agentIssues": ["<specific unprofessional behaviors if any, empty array if professional>"],
  "agentStrengths": ["<specific good behaviors>"],
  "summary": "<1 sentence: What the agent did well or poorly>"
}}

SCORING GUIDE:
5 = Exemplary - went above and beyond, excellent handling
4 = Professional - proper tone, helpful, no issues
3 = Adequate - got the job done, minor issues
2 = Below standard - noticeable problems, customer impact
1 = Unprofessional - rude, dismissive, caused problems

Return ONLY valid JSON."""


_FENCE_OPEN = re.compile(r"^```[A-Za-z]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(content: str) -> str:
    """Remove a leading ```/```json fence and a trailing ``` fence."""
    text = content.strip()
    text = _FENCE_OPEN.sub("", text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def parse_response(content: Optional[str], schema: Type[SchemaT]) -> SchemaT:
    """
    Parse raw classifier output into a validated schema instance.
    
    Raises:
        ResponseParseError: If the text is not JSON or fails validation
    """
    if not content or not content.strip():
        raise ResponseParseError("No content in response")

    text = strip_code_fences(content)
    try:
        payload = json.loads(text)
    except ValueError as ex:
        raise ResponseParseError(f"Response is not valid JSON: {ex}") from ex

    if not isinstance(payload, dict):
        raise ResponseParseError("Response JSON is not an object")

    try:
        return schema.model_validate(payload)
    except ValidationError as ex:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in ex.errors()
        )
        raise ResponseParseError(f"Response failed validation: {problems}") from ex


def conversation_excerpt(transcript: TranscriptRecord, last_n_chars: int) -> str:
    """Last N characters of the speaker-tagged conversation."""
    text = transcript.conversation_text()
    return text[-last_n_chars:] if last_n_chars > 0 else text


def build_analysis_prompt(transcript: TranscriptRecord, last_n_chars: int) -> str:
    return ANALYSIS_PROMPT.format(
        agent=transcript.agent_name or "Unknown",
        department=transcript.department or "Unknown",
        disposition=transcript.disposition or "Unknown",
        duration=transcript.duration_seconds or 0,
        chars=last_n_chars,
        excerpt=conversation_excerpt(transcript, last_n_chars),
    )


def build_professionalism_prompt(transcript: TranscriptRecord, max_chars: int) -> str:
    text = "\n".join(
        f"{m.speaker.upper()}: {m.text}" for m in transcript.messages or []
    )
    return PROFESSIONALISM_PROMPT.format(excerpt=text[:max_chars])


class OpenRouterClient:
    """
    Minimal async client for an OpenAI-style chat completions endpoint.
    
    Args:
        api_key: Bearer token for the endpoint
        url: Chat completions URL
        client: Optional shared httpx.AsyncClient
    """

    def __init__(
        self,
        api_key: str,
        url: str = settings.openrouter_url,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def complete(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """
        Send a single-message prompt and return the reply text.
        
        Raises:
            ClassifierError: On HTTP errors or an empty reply
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_title,
        }
        body = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        try:
            response = await self._client.post(self.url, headers=headers, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as ex:
            raise ClassifierError(
                f"API error: {ex.response.status_code} {ex.response.reason_phrase}"
            ) from ex
        except httpx.HTTPError as ex:
            raise ClassifierError(f"API request failed: {ex}") from ex

        data = response.json()
        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        if not content:
            raise ClassifierError("No content in response")
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class TranscriptClassifier:
    """Sentiment/topic classifier backed by a chat completions model."""

    def __init__(
        self,
        client: OpenRouterClient,
        model: str = settings.analysis_model,
        last_n_chars: int = settings.analysis_last_n_chars,
        temperature: float = settings.analysis_temperature,
        max_tokens: int = settings.analysis_max_tokens,
    ):
        self.client = client
        self.model = model
        self.last_n_chars = last_n_chars
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def analyze(self, transcript: TranscriptRecord) -> CallAnalysis:
        if not transcript.messages:
            raise PermanentAnalysisError("No conversation messages")

        prompt = build_analysis_prompt(transcript, self.last_n_chars)
        content = await self.client.complete(
            prompt, self.model, self.temperature, self.max_tokens
        )
        return parse_response(content, CallAnalysis)


class ProfessionalismClassifier:
    """Agent professionalism reviewer backed by a chat completions model."""

    def __init__(
        self,
        client: OpenRouterClient,
        model: str = settings.professionalism_model,
        max_chars: int = settings.professionalism_max_chars,
        min_messages: int = settings.professionalism_min_messages,
    ):
        self.client = client
        self.model = model
        self.max_chars = max_chars
        self.min_messages = min_messages

    async def analyze(self, transcript: TranscriptRecord) -> ProfessionalismAssessment:
        if len(transcript.messages or []) < self.min_messages:
            raise PermanentAnalysisError(
                f"Conversation too short to review ({len(transcript.messages or [])} messages)"
            )

        prompt = build_professionalism_prompt(transcript, self.max_chars)
        content = await self.client.complete(prompt, self.model, temperature=0.2, max_tokens=600)
        return parse_response(content, ProfessionalismAssessment)
