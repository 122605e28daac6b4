# services/gemini.py
import functools
import logging

from google import genai
from google.genai import types

from config import settings

_LOG = logging.getLogger(__name__)

# ───────────── Model Names ─────────────
CHAT_MODEL = "models/gemini-2.0-flash"


# ───────────── API Key & Client ─────────────
def is_available() -> bool:
    return bool(settings.gemini_api_key)


@functools.lru_cache(maxsize=1)
def _client() -> genai.Client:
    if not settings.gemini_api_key:
        raise RuntimeError("GEMINI_API_KEY not set in environment")
    return genai.Client(api_key=settings.gemini_api_key)


# ───────────── Generation (sync) ─────────────
def generate(
    prompt: str,
    max_output_tokens: int = 1000,
    temperature: float = 0.7,
) -> str:
    """Run a chat completion and return the LLM’s text response."""
    try:
        resp = _client().models.generate_content(
            model=CHAT_MODEL,
            contents=[prompt],
            config=types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            ),
        )
        # take the first candidate’s text
        return resp.candidates[0].content.parts[0].text
    except Exception as e:
        _LOG.error("Gemini generation failed: %s", e)
        raise
