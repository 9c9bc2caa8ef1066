"""Memory extraction. A language model reads a batch of events and says
what, if anything, is worth remembering.

Every failure mode (unreachable, HTTP error, timeout, non-JSON or
wrongly shaped output) surfaces as ExtractionError. Nothing else escapes.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Any, Protocol

from memorypilot.errors import ExtractionError
from memorypilot.models import (
    CommandPayload,
    CommitPayload,
    Event,
    ExtractedMemory,
    FileChangePayload,
    RawPayload,
)

if TYPE_CHECKING:
    from memorypilot.config import AgentConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # local models can be slow

EXTRACTION_PROMPT = """You are a memory extraction system for a software developer.
Analyze the following development events and extract memories worth remembering.

For each memory, provide:
- type: One of: decision, pattern, fact, preference, mistake, learning
- content: The full memory (1-3 sentences, be specific)
- summary: Short version (under 80 characters)
- confidence: 0.0-1.0 how confident this is worth remembering
- topics: Array of relevant topics (2-5 keywords)

Rules:
- Only extract genuinely useful memories that would help an AI assistant
- Focus on: decisions made, patterns used, lessons learned, preferences shown
- Ignore: routine commits, trivial changes, boilerplate code
- Be specific: include WHY decisions were made if evident
- A batch of events might produce 0-3 memories (don't force it)

Events to analyze:
{events}

Respond ONLY with valid JSON in this exact format (no markdown, no explanation):
{{"memories": [{{"type": "decision", "content": "...", "summary": "...", "confidence": 0.85, "topics": ["topic1", "topic2"]}}]}}

If no memories worth extracting, respond: {{"memories": []}}"""


class Extractor(Protocol):
    def extract(self, events: list[Event]) -> list[ExtractedMemory]:
        """Candidate memories for a non-empty batch. Raises ExtractionError."""


# ── Prompt formatting ──────────────────────────────────────────────────


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def format_event(index: int, event: Event) -> str:
    stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(event.timestamp))
    lines = [f"Event {index} [{event.kind}] at {stamp}:"]
    payload = event.payload
    if isinstance(payload, CommitPayload):
        lines.append(f"  Commit: {payload.message}")
        if payload.files:
            lines.append(f"  Files: {', '.join(payload.files[:5])}")
        if payload.diff:
            lines.append(f"  Diff summary: {_truncate(payload.diff, 500)}")
    elif isinstance(payload, FileChangePayload):
        lines.append(f"  File: {payload.path}")
        if payload.content:
            lines.append(f"  Content preview: {_truncate(payload.content, 300)}")
    elif isinstance(payload, CommandPayload):
        lines.append(f"  Command: {payload.command}")
    elif isinstance(payload, RawPayload):
        lines.append(f"  Data: {_truncate(json.dumps(payload.data, default=str), 300)}")
    return "\n".join(lines)


def format_events(events: list[Event]) -> str:
    return "\n\n".join(format_event(i, e) for i, e in enumerate(events, 1)) + "\n"


def build_prompt(events: list[Event]) -> str:
    return EXTRACTION_PROMPT.format(events=format_events(events))


# ── Response parsing ───────────────────────────────────────────────────


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_extraction(text: str) -> list[ExtractedMemory]:
    """Parse model output into candidates.

    The envelope must be ``{"memories": [...]}``; a single bad entry is
    skipped with a warning rather than failing the whole batch.
    """
    cleaned = _strip_fences(text or "")
    try:
        data = json.loads(cleaned)
    except ValueError as exc:
        raise ExtractionError(
            f"failed to parse model response: {exc} (response: {cleaned[:200]!r})"
        ) from exc
    if not isinstance(data, dict) or not isinstance(data.get("memories"), list):
        raise ExtractionError(
            f"model response has no 'memories' list: {cleaned[:200]!r}"
        )
    result = []
    for entry in data["memories"]:
        try:
            result.append(ExtractedMemory.from_dict(entry))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed extracted memory: %s", exc)
    return result


# ── Providers ──────────────────────────────────────────────────────────


def _post_json(url: str, body: dict[str, Any], headers: dict[str, str],
               timeout: float) -> dict[str, Any]:
    req = urllib.request.Request(
        url,
        data=json.dumps(body).encode(),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", "replace")[:200]
        raise ExtractionError(f"{url} returned HTTP {exc.code}: {detail}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise ExtractionError(f"request to {url} failed: {exc}") from exc
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ExtractionError(f"{url} returned non-JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionError(f"{url} returned unexpected JSON")
    return data


class NullExtractor:
    """Extracts nothing. Used when no model is configured."""

    def extract(self, events: list[Event]) -> list[ExtractedMemory]:
        return []


class OllamaExtractor:
    def __init__(self, endpoint: str = "", model: str = "llama3.2",
                 timeout: float = DEFAULT_TIMEOUT) -> None:
        self.endpoint = (endpoint or "http://localhost:11434").rstrip("/")
        self.model = model or "llama3.2"
        self.timeout = timeout

    def extract(self, events: list[Event]) -> list[ExtractedMemory]:
        if not events:
            return []
        data = _post_json(
            f"{self.endpoint}/api/generate",
            {"model": self.model, "prompt": build_prompt(events),
             "stream": False, "format": "json"},
            {},
            self.timeout,
        )
        response = data.get("response")
        if not isinstance(response, str):
            raise ExtractionError("ollama response has no 'response' text")
        return parse_extraction(response)


class AnthropicExtractor:
    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str = "claude-3-5-haiku-latest",
                 timeout: float = DEFAULT_TIMEOUT, max_tokens: int = 1024) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    def extract(self, events: list[Event]) -> list[ExtractedMemory]:
        if not events:
            return []
        data = _post_json(
            self.API_URL,
            {"model": self.model, "max_tokens": self.max_tokens,
             "messages": [{"role": "user", "content": build_prompt(events)}]},
            {"x-api-key": self.api_key, "anthropic-version": self.API_VERSION},
            self.timeout,
        )
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ExtractionError("anthropic response has no content blocks")
        text = "".join(
            b.get("text", "") for b in blocks
            if isinstance(b, dict) and b.get("type") == "text"
        )
        return parse_extraction(text)


def build_extractor(config: AgentConfig) -> Extractor:
    provider = (config.extraction_provider or "none").lower()
    if provider == "ollama":
        return OllamaExtractor(config.ollama_url, config.extraction_model,
                               config.extraction_timeout)
    if provider == "anthropic":
        if not config.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set, extraction disabled")
            return NullExtractor()
        return AnthropicExtractor(config.anthropic_api_key,
                                  config.anthropic_model,
                                  config.extraction_timeout)
    if provider != "none":
        logger.warning("Unknown extraction provider %r, extraction disabled",
                       provider)
    return NullExtractor()
