"""
Conversational assistant service.

Sends the farmer's question, with a short window of prior turns, to the
text-generation provider under a fixed KisanSathi persona and maps the
outcome onto the `/chat` response contract.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, field_validator

from .. import config
from .normalizer import UpstreamFailure, classify_failure, status_for

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 6

MISSING_CONFIG_MESSAGE = (
    "The AI service is not properly configured. Please ensure GOOGLE_API_KEY is set."
)
QUOTA_MESSAGE = (
    "I'm sorry, but my daily limit has been reached. I'll be back soon! "
    "Please try again in a few hours."
)
TRANSIENT_MESSAGE = "I apologize, but I'm having trouble right now. Please try again in a moment."


class ChatTurn(BaseModel):
    role: str = "user"
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _binary_role(cls, v: Any) -> str:
        return "assistant" if v == "assistant" else "user"

    @field_validator("content", mode="before")
    @classmethod
    def _text_content(cls, v: Any) -> str:
        return "" if v is None else str(v)


def build_system_prompt(language: Optional[str]) -> str:
    return f"""You are KisanSathi, a professional Indian agricultural expert AI assistant. You provide practical, accurate advice to farmers.

Your expertise includes:
- Crop cultivation techniques and best practices for Indian climate zones
- Pest and disease identification and organic/chemical treatment methods
- Weather-based farming decisions and seasonal planning
- Government schemes (PM-KISAN, PMFBY, soil health cards, etc.)
- Market prices, MSP rates, and selling strategies
- Soil health management and fertilizer recommendations
- Water management and irrigation techniques
- Organic farming and sustainable agriculture

Communication style:
- Speak in simple, clear language that farmers can understand
- Be supportive and encouraging
- Provide actionable steps whenever possible
- If asked in Hindi or regional languages, respond in that language
- Keep responses concise (2-3 paragraphs) but comprehensive

Current language preference: {language or "en"}"""


def window_history(history: Optional[Sequence[ChatTurn]], size: int = HISTORY_WINDOW) -> List[Dict[str, str]]:
    """Keep the most recent `size` non-empty turns, oldest first.

    Blank turns are dropped first; the provider rejects empty text parts.
    """
    turns = [t for t in (history or []) if t.content.strip()]
    if size <= 0:
        return []
    return [{"role": t.role, "content": t.content} for t in turns[-size:]]


def answer(
    message: str,
    language: Optional[str],
    history: Optional[Sequence[ChatTurn]],
    generator,
) -> Tuple[int, Dict[str, Any]]:
    """Answer one chat message.

    `generator` is None when no API key could be resolved; in that case no
    upstream call is attempted. Returns (status_code, body).
    """
    if generator is None:
        logger.error("Chat request rejected: no API key found in environment variables")
        return status_for(UpstreamFailure.MISSING_CONFIG), {
            "error": "API key not configured",
            "response": MISSING_CONFIG_MESSAGE,
        }

    turns = window_history(history)
    turns.append({"role": "user", "content": message})

    try:
        text = generator.generate(
            system=build_system_prompt(language),
            turns=turns,
            max_output_tokens=config.get_chat_max_output_tokens(),
            temperature=config.get_chat_temperature(),
        )
    except Exception as e:
        failure = classify_failure(e)
        logger.exception("Chat upstream call failed (%s)", failure.value)
        if failure is UpstreamFailure.QUOTA_EXCEEDED:
            return status_for(failure), {"error": "API quota exceeded", "response": QUOTA_MESSAGE}
        return status_for(failure), {"error": "Failed to generate response", "response": TRANSIENT_MESSAGE}

    return 200, {"response": text}
