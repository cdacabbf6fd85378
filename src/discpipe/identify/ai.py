"""AI agent for disc identification and advisory annotations.

Talks to any OpenAI-compatible chat completions endpoint. Every reply is
expected to be one JSON object; replies that do not decode are treated as
"no answer". Nothing here raises on network trouble.
"""

import json
import logging
import re
from typing import TYPE_CHECKING, Any

import httpx

from discpipe.error_handling import ConfigurationError
from discpipe.identify.base import (
    Identification,
    IdentificationStrategy,
    normalize_video_type,
)

if TYPE_CHECKING:
    from discpipe.config import DiscPipeConfig
    from discpipe.jobs.models import Job

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"

_FENCE = re.compile(r"```(?:json)?\s*")
_JSON_ONLY = "Respond ONLY with valid JSON, no markdown formatting."


def parse_json_reply(reply: str | None) -> dict[str, Any] | None:
    """Strip code fences and decode. Anything but a JSON object is None."""
    if not reply:
        return None
    cleaned = _FENCE.sub("", reply).replace("```", "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning(f"AI reply was not JSON: {reply[:200]!r}")
        return None
    return data if isinstance(data, dict) else None


def _confidence(data: dict[str, Any]) -> float:
    try:
        return float(data.get("confidence") or 0)
    except (TypeError, ValueError):
        return 0.0


def _year(value: Any) -> str:
    return str(value).strip()[:4] if value not in (None, "") else ""


class AIAgent:
    """Client for an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        *,
        api_url: str = DEFAULT_API_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = 30,
    ):
        self.api_key = api_key
        self.client = client
        self.api_url = api_url
        self.model = model
        self.timeout = timeout

    async def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 500,
    ) -> str | None:
        """Send ``messages`` and return the first choice's text."""
        try:
            response = await self.client.post(
                self.api_url,
                json={
                    "model": self.model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"AI chat completion error {e.response.status_code}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"AI chat completion failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"AI chat completion returned invalid JSON: {e}")
            return None

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None
        return content.strip() if isinstance(content, str) and content.strip() else None

    async def _ask(self, system: str, user: str) -> dict[str, Any] | None:
        reply = await self.chat_completion(
            [
                {"role": "system", "content": f"{system} {_JSON_ONLY}"},
                {"role": "user", "content": user},
            ],
        )
        return parse_json_reply(reply)

    async def parse_disc_label(
        self,
        label: str,
        disctype: str | None = None,
    ) -> dict[str, Any] | None:
        """Turn a label like ``STAR_WARS_EP_IV`` into {title, year, type, confidence}."""
        if not label:
            return None
        return await self._ask(
            "You are a media identification assistant. You parse disc labels "
            f"from {disctype or 'video'} discs into clean movie/TV show titles.",
            f'Parse this disc label into a proper title:\n\nDisc label: "{label}"\n'
            f"Disc type: {disctype or 'unknown'}\n\n"
            "Respond with ONLY a JSON object (no code fences) with these fields:\n"
            '- "title": the clean human-readable title\n'
            '- "year": the release year if you can determine it, otherwise empty string\n'
            '- "type": "movie" or "series"\n'
            '- "confidence": a number 0-1 indicating how confident you are',
        )

    async def identify_unknown_disc(self, job: "Job") -> dict[str, Any] | None:
        """Best guess from whatever context the job carries."""
        context = []
        if job.label:
            context.append(f'Disc label: "{job.label}"')
        if job.crc_id:
            context.append(f"CRC ID: {job.crc_id}")
        if job.disctype:
            context.append(f"Disc type: {job.disctype}")
        if job.mountpoint:
            context.append(f"Mountpoint: {job.mountpoint}")
        if not context:
            return None

        details = "\n".join(context)
        return await self._ask(
            "You are a media identification assistant for optical discs "
            "(DVD, Blu-ray, CD). Use any available context to identify the disc content.",
            f"I have a disc with the following information:\n\n{details}\n\n"
            "Can you identify this disc? Respond with ONLY a JSON object (no code fences) with:\n"
            '- "title": your best guess at the title\n'
            '- "year": release year if known, empty string otherwise\n'
            '- "type": "movie", "series", or "unknown"\n'
            '- "confidence": a number 0-1\n'
            '- "reasoning": brief explanation',
        )

    async def resolve_ambiguous_results(
        self,
        label: str,
        candidates: list[dict[str, Any]],
    ) -> dict[str, Any] | None:
        """Pick the best of several provider candidates for ``label``."""
        if not candidates:
            return None

        listing = "\n".join(
            f'{i}. "{c.get("title")}" ({c.get("year") or "unknown year"}) - '
            f"{c.get('type') or 'unknown type'}"
            for i, c in enumerate(candidates[:10], start=1)
        )
        data = await self._ask(
            "You are a media identification assistant. You help match disc "
            "labels to the correct metadata result.",
            f'A disc labeled "{label}" returned these potential matches:\n\n{listing}\n\n'
            "Which number is the best match? Respond with ONLY a JSON object "
            '(no code fences) with:\n- "index": the 1-based index of the best match\n'
            '- "confidence": a number 0-1',
        )
        if not data:
            return None
        try:
            index = int(data.get("index") or 1) - 1
        except (TypeError, ValueError):
            return None
        if 0 <= index < min(len(candidates), 10):
            return {**candidates[index], "confidence": _confidence(data)}
        return None

    async def recommend_transcode_settings(self, job: "Job", preset: str) -> dict[str, Any] | None:
        """Advisory only: {preset, args, reasoning}."""
        return await self._ask(
            "You are a video transcoding assistant. You recommend HandBrake or "
            "ffmpeg settings for ripped optical discs.",
            f'Title: "{job.title or job.label}"\nDisc type: {job.disctype}\n'
            f"Video type: {job.video_type or 'unknown'}\nConfigured preset: {preset or 'none'}\n\n"
            "Respond with ONLY a JSON object (no code fences) with:\n"
            '- "preset": the preset you would use\n'
            '- "args": any extra arguments, or empty string\n'
            '- "reasoning": brief explanation',
        )

    async def diagnose_error(self, job: "Job", error_text: str) -> dict[str, Any] | None:
        """Advisory only: {diagnosis, suggestion}."""
        if not error_text:
            return None
        return await self._ask(
            "You are a troubleshooting assistant for an automatic disc ripping "
            "pipeline built on MakeMKV, HandBrake and ffmpeg.",
            f"Disc type: {job.disctype}\nTitle: {job.title or job.label or 'unknown'}\n"
            f"Status: {job.status.value}\n\nError output:\n{error_text[-4000:]}\n\n"
            "Respond with ONLY a JSON object (no code fences) with:\n"
            '- "diagnosis": the most likely cause\n'
            '- "suggestion": what the operator should try',
        )


def create_agent(config: "DiscPipeConfig", client: httpx.AsyncClient) -> AIAgent | None:
    """Build the agent, or None when no credential is configured."""
    if not config.ai_api_key:
        return None
    return AIAgent(
        config.ai_api_key,
        client,
        api_url=config.ai_api_url or DEFAULT_API_URL,
        model=config.ai_model or DEFAULT_MODEL,
        timeout=config.ai_request_timeout,
    )


def require_agent(config: "DiscPipeConfig", client: httpx.AsyncClient) -> AIAgent:
    agent = create_agent(config, client)
    if agent is None:
        msg = "No AI API key configured"
        raise ConfigurationError(
            msg,
            solution="Set ai_api_key in config.toml or the DISCPIPE_AI_API_KEY environment variable",
        )
    return agent


def identification_from_reply(data: dict[str, Any] | None, source: str) -> Identification | None:
    """Convert an AI reply into a candidate. Confidence gating is the caller's."""
    if not data or not data.get("title"):
        return None
    return Identification(
        title=str(data["title"]).strip(),
        year=_year(data.get("year")),
        video_type=normalize_video_type(data.get("type")),
        confidence=_confidence(data),
        source=source,
        extra={"reasoning": data.get("reasoning", "")},
    )


class AILabelStrategy(IdentificationStrategy):
    """Parse the raw volume label."""

    name = "ai_label"

    def __init__(self, agent: AIAgent):
        self.agent = agent

    def applies_to(self, job: "Job") -> bool:
        return job.disctype != "music" and bool(job.label) and not job.hasnicetitle

    async def resolve(self, job: "Job") -> Identification | None:
        data = await self.agent.parse_disc_label(job.label, job.disctype)
        return identification_from_reply(data, self.name)


class AIContextStrategy(IdentificationStrategy):
    """Last resort when no title exists at all."""

    name = "ai_context"

    def __init__(self, agent: AIAgent):
        self.agent = agent

    def applies_to(self, job: "Job") -> bool:
        return job.disctype != "music" and not job.hasnicetitle and not job.title

    async def resolve(self, job: "Job") -> Identification | None:
        data = await self.agent.identify_unknown_disc(job)
        return identification_from_reply(data, self.name)
