"""
Gemini integration for the variation pipeline.

- Style analysis: Gemini Flash (vision) via REST, JSON-only response
- Storyline concepts: Gemini Flash via REST, JSON-only response
"""

import os
import json
import base64
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from variations.pipeline.concepts import time_progression_sequence, with_style_lock
from variations.pipeline.models import Concept, Storyline, StyleDescriptor

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
GEMINI_ANALYSIS_MODEL = os.getenv("GEMINI_ANALYSIS_MODEL", "gemini-2.0-flash")
GEMINI_CONCEPT_MODEL = os.getenv("GEMINI_CONCEPT_MODEL", "gemini-2.0-flash")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiAPIError(Exception):
    def __init__(self, status_code: Optional[int], message: str):
        super().__init__(f"Gemini API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _guess_mime(url: str) -> str:
    lower = url.lower().split("?", 1)[0]
    if lower.endswith(".png"):
        return "image/png"
    if lower.endswith(".webp"):
        return "image/webp"
    return "image/jpeg"


def _parse_json_response(text: str) -> dict:
    """Parse JSON from Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            try:
                return json.loads(json_block.strip())
            except json.JSONDecodeError:
                pass
        raise GeminiAPIError(None, f"Gemini returned invalid JSON: {text[:200]}")


def _response_text(data: dict) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise GeminiAPIError(None, f"Unexpected Gemini response shape: {str(data)[:200]}")


class _GeminiClient:
    def __init__(
        self,
        api_key: str = GEMINI_API_KEY,
        model: str = GEMINI_ANALYSIS_MODEL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 60,
    ):
        self.api_key = api_key
        self.model = model
        self.transport = transport
        self.timeout = timeout

    def _api_url(self) -> str:
        return f"{API_BASE}/models/{self.model}:generateContent?key={self.api_key}"

    async def _generate_content(self, client: httpx.AsyncClient, parts: list, config: Optional[dict] = None) -> dict:
        """Call Gemini generateContent REST endpoint."""
        if not self.api_key:
            raise GeminiAPIError(None, "GEMINI_API_KEY not set")

        body: dict = {"contents": [{"parts": parts}]}
        if config:
            body["generationConfig"] = config

        resp = await client.post(self._api_url(), json=body)
        if resp.status_code != 200:
            raise GeminiAPIError(resp.status_code, resp.text[:500])
        return resp.json()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, follow_redirects=True)


# =========================================================================
# 1. Style analysis: Gemini Flash (Vision)
# =========================================================================

ANALYSIS_PROMPT = """You are a cinematographer analysing a reference frame so that new shots can match it exactly.

Describe the image's subject, color palette, lighting, visual style and narrative tone.

Return your analysis as a JSON object with this EXACT structure (no markdown, just raw JSON):
{
  "subject": {"type": "person|product|scene|...", "description": "...", "context": "..."},
  "colorPalette": {"dominant": ["#hex or color name", "..."], "grading": "...", "mood": "...", "saturation": "...", "temperature": "..."},
  "lighting": {"quality": "...", "direction": "...", "mood": "...", "atmosphere": ["...", "..."]},
  "visualStyle": {"aesthetic": ["..."], "composition": "...", "depth": "...", "filmGrain": "...", "postProcessing": ["..."]},
  "narrativeTone": {"primaryMood": "...", "energy": "...", "cinematographer": "closest reference", "director": "closest reference"},
  "styleLockPrompt": "One sentence that, prefixed to any prompt, reproduces this exact look."
}

Keep every value short and concrete."""


class GeminiStyleAnalyzer(_GeminiClient):
    """StyleAnalyzer backed by Gemini vision."""

    async def analyze(self, signed_url: str) -> StyleDescriptor:
        async with self._client() as client:
            img = await client.get(signed_url)
            img.raise_for_status()
            mime = img.headers.get("content-type", "").split(";")[0] or _guess_mime(signed_url)

            parts = [
                {"text": ANALYSIS_PROMPT},
                {"inlineData": {"mimeType": mime, "data": base64.b64encode(img.content).decode()}},
            ]
            data = await self._generate_content(
                client,
                parts,
                config={"temperature": 0.2, "responseMimeType": "application/json"},
            )

        raw = _parse_json_response(_response_text(data))
        try:
            style = StyleDescriptor.model_validate(raw)
        except ValidationError as e:
            raise GeminiAPIError(None, f"Style analysis did not match schema: {e}")
        logger.info(f"Style analysis: mood={style.narrative_tone.primary_mood} grading={style.color_palette.grading}")
        return style


# =========================================================================
# 2. Storyline concepts: Gemini Flash
# =========================================================================

def build_storyline_prompt(style: StyleDescriptor, count: int, user_context: Optional[str] = None) -> str:
    sequence = "\n".join(
        f"  - Image {i + 1}: {label} ({minutes} minutes)"
        for i, (minutes, label) in enumerate(time_progression_sequence(count))
    )
    subject = style.subject
    context = f"USER CONTEXT:\n{user_context}\n\n" if user_context else ""
    return f"""Generate {count} storyline image concepts showing narrative progression of the reference subject over exponential time intervals.

REFERENCE SUBJECT:
- Type: {subject.type}
- Description: {subject.description}
- Context: {subject.context}

TIME PROGRESSION SEQUENCE:
{sequence}

STYLE PARAMETERS (MUST MATCH EXACTLY):
- Style Lock: "{style.style_lock_prompt}"
- Color Grading: {style.color_palette.grading}
- Dominant Colors: {", ".join(style.color_palette.dominant)}
- Lighting: {style.lighting.quality}, {style.lighting.direction}
- Film Grain: {style.visual_style.film_grain}
- Cinematographer: {style.narrative_tone.cinematographer}
- Director: {style.narrative_tone.director}

MOOD:
- Primary: {style.narrative_tone.primary_mood}
- Energy: {style.narrative_tone.energy}

{context}REQUIREMENTS:
1. Show believable evolution appropriate to the time elapsed
2. Maintain exact visual coherence (color, lighting, grain, mood)
3. Create narrative continuity, not random B-roll

Return a JSON object (no markdown, just raw JSON):
{{"concepts": [{{"prompt": "...", "timeElapsed": <minutes>, "timeLabel": "+1min", "narrativeNote": "..."}}]}}
with exactly {count} concepts in sequence order."""


class StorylineConceptGenerator(_GeminiClient):
    """ConceptGenerator producing time-progressed storyline beats."""

    def __init__(self, api_key: str = GEMINI_API_KEY, model: str = GEMINI_CONCEPT_MODEL, **kwargs):
        super().__init__(api_key=api_key, model=model, **kwargs)

    async def generate(
        self,
        count: int,
        style: StyleDescriptor,
        user_context: Optional[str] = None,
    ) -> list[Concept]:
        async with self._client() as client:
            data = await self._generate_content(
                client,
                [{"text": build_storyline_prompt(style, count, user_context)}],
                config={"temperature": 0.8, "responseMimeType": "application/json"},
            )

        raw = _parse_json_response(_response_text(data))
        items = raw.get("concepts", []) if isinstance(raw, dict) else []
        sequence = time_progression_sequence(len(items))

        concepts = []
        for (_, fallback_label), item in zip(sequence, items):
            if not isinstance(item, dict):
                continue
            label = item.get("timeLabel") or fallback_label
            concepts.append(
                Concept(
                    prompt=with_style_lock(str(item.get("prompt", "")), style),
                    metadata=Storyline(time_label=label, narrative_note=item.get("narrativeNote") or ""),
                )
            )
        logger.info(f"Storyline: {len(concepts)} concepts from {self.model}")
        return concepts
