import httpx
import logging

from discoverycall.prompts import GENERIC_FALLBACK

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


async def generate_reply(
    messages: list[dict],
    api_key: str,
    model: str = "gpt-4o",
    timeout: float = 8.0,
) -> str:
    """One chat completion for the generic-response branch.

    Returns the fallback line on any failure so the caller always has
    something to say.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(
                OPENAI_CHAT_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                json={
                    "model": model,
                    "temperature": 0.7,
                    "max_tokens": 150,
                    "messages": messages,
                },
            )
            resp.raise_for_status()
            reply = resp.json()["choices"][0]["message"]["content"].strip()
            return reply or GENERIC_FALLBACK
    except Exception as e:
        logger.warning(f"Generic reply failed, using fallback: {e}")
        return GENERIC_FALLBACK
