# copyflow/llm_wrapper.py
"""
LLM client. Supports OpenAI and Anthropic backends plus a deterministic mock.

Returns a standardized dict:
{
  "text": "<assistant text>",
  "model": "<model used>",
  "response_id": "<model response id if available>",
  "raw": <raw response object>
}

Usage:
  client = LLMClient.from_settings(settings)
  resp = client.complete(messages=[...], max_tokens=2000, temperature=0.7)
  text = resp["text"]
"""

import base64
import json
import time
from typing import Any, Dict, List, Optional, Tuple

from copyflow.monitoring import get_logger

log = get_logger("llm")

Image = Tuple[bytes, str]  # (raw bytes, content type)


class LLMError(RuntimeError):
    """Transport or provider failure (including timeouts)."""


class LLMClient:
    def __init__(self, provider: str = "openai", model: str = "gpt-4o-mini",
                 vision_model: Optional[str] = None, openai_api_key: str = "",
                 anthropic_api_key: str = "", timeout: float = 60.0, mock: bool = False):
        self.provider = provider
        self.model = model
        self.vision_model = vision_model or model
        self.openai_api_key = openai_api_key
        self.anthropic_api_key = anthropic_api_key
        self.timeout = timeout
        self.mock = mock
        self._client = None

    @classmethod
    def from_settings(cls, settings) -> "LLMClient":
        return cls(
            provider=settings.llm_provider,
            model=settings.llm_model,
            vision_model=settings.vision_model,
            openai_api_key=settings.openai_api_key,
            anthropic_api_key=settings.anthropic_api_key,
            timeout=settings.llm_timeout_seconds,
            mock=settings.mock_llm,
        )

    # -----------------------------------------------------------------------
    # Anthropic backend
    # -----------------------------------------------------------------------
    def _anthropic(self):
        if self._client is None:
            from anthropic import Anthropic
            self._client = Anthropic(api_key=self.anthropic_api_key, timeout=self.timeout)
        return self._client

    def _real_anthropic_chat(self, messages: List[Dict[str, str]], model: str,
                             max_tokens: int, temperature: float,
                             image: Optional[Image]) -> Dict[str, Any]:
        # Anthropic uses a separate system param, not a system message in messages list
        system_text = ""
        chat_messages: List[Dict[str, Any]] = []
        for m in messages:
            if m["role"] == "system":
                system_text += m["content"] + "\n"
            else:
                chat_messages.append({"role": m["role"], "content": m["content"]})

        if image is not None and chat_messages:
            data, content_type = image
            last = chat_messages[-1]
            last["content"] = [
                {"type": "image", "source": {
                    "type": "base64",
                    "media_type": content_type,
                    "data": base64.b64encode(data).decode("ascii"),
                }},
                {"type": "text", "text": last["content"]},
            ]

        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat_messages,
        }
        if system_text.strip():
            kwargs["system"] = system_text.strip()

        resp = self._anthropic().messages.create(**kwargs)

        text = ""
        for block in resp.content:
            if hasattr(block, "text"):
                text += block.text

        return {"text": text, "model": model, "response_id": getattr(resp, "id", None), "raw": resp}

    # -----------------------------------------------------------------------
    # OpenAI backend
    # -----------------------------------------------------------------------
    def _openai(self):
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.openai_api_key, timeout=self.timeout)
        return self._client

    def _real_openai_chat_completion(self, messages: List[Dict[str, str]], model: str,
                                     max_tokens: int, temperature: float,
                                     image: Optional[Image]) -> Dict[str, Any]:
        payload: List[Dict[str, Any]] = [dict(m) for m in messages]
        if image is not None and payload:
            data, content_type = image
            data_url = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
            last = payload[-1]
            last["content"] = [
                {"type": "text", "text": last["content"]},
                {"type": "image_url", "image_url": {"url": data_url}},
            ]
        resp = self._openai().chat.completions.create(
            model=model,
            messages=payload,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        choices = getattr(resp, "choices", [])
        text = choices[0].message.content if choices else ""
        return {"text": text or "", "model": model, "response_id": getattr(resp, "id", None), "raw": resp}

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------
    def complete(self, messages: List[Dict[str, str]], model: Optional[str] = None,
                 max_tokens: int = 2000, temperature: float = 0.7,
                 image: Optional[Image] = None) -> Dict[str, Any]:
        """
        messages: list of {role, content}
        image: optional (bytes, content_type) attached to the last user message
        Returns: dict with keys 'text','model','response_id','raw'
        """
        model = model or (self.vision_model if image is not None else self.model)
        if self.mock:
            return _mock_llm(messages, model=model)
        start = time.time()
        try:
            if self.provider == "anthropic":
                resp = self._real_anthropic_chat(messages, model, max_tokens, temperature, image)
            else:
                resp = self._real_openai_chat_completion(messages, model, max_tokens, temperature, image)
        except Exception as e:
            log.warning("LLM call failed", extra={"provider": self.provider, "model": model})
            raise LLMError(f"LLM call failed ({self.provider}): {e}") from e
        log.debug("LLM call finished", extra={"model": model, "seconds": round(time.time() - start, 3)})
        return resp


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------
_MOCK_CONTENT = {
    "productTitle": "Mock Product Title",
    "productDescription": "A deterministic mock description used for local development.",
    "seoTitle": "Mock SEO Title",
    "metaDescription": "Mock meta description.",
    "callToAction": "Order yours today",
    "keyFeatures": [f"Feature {i}" for i in range(1, 6)],
    "tagsKeywords": [f"tag{i}" for i in range(1, 11)],
}


def _mock_llm(messages: List[Dict[str, str]], model: str) -> Dict[str, Any]:
    """
    Deterministic mock used in dev. Picks a response shape from the JSON keys
    the prompt asks for, so every generation kind gets schema-valid output.
    """
    prompt = "\n".join(m["content"] for m in messages if isinstance(m.get("content"), str))
    if "tiktokScript" in prompt:
        payload: Dict[str, Any] = {
            "tiktokScript": {"hook": "POV:", "problem": "p", "solution": "s", "proof": "pr",
                             "cta": "Buy now", "hashtags": ["#fyp", "#viral"]},
            "instagramCaption": {"caption": "c", "hashtags": ["#shop"], "storyIdeas": ["poll"]},
            "youtubeTitle": "Mock video",
            "youtubeDescription": "Mock description",
            "twitterThread": ["1/ mock"],
            "viralHooks": ["You won't believe this"],
            "platformHashtags": {"tiktok": ["#fyp"], "instagram": ["#shop"],
                                 "youtube": ["review"], "twitter": ["#deal"]},
        }
    elif "improvements" in prompt:
        payload = {"improvements": ["Clearer title"], "content": _MOCK_CONTENT}
    elif "callToAction" in prompt:
        payload = _MOCK_CONTENT
    elif "targetAudience" in prompt:
        payload = {"productType": "mock", "colors": ["black"], "materials": ["plastic"],
                   "style": "modern", "features": ["compact"], "targetAudience": "everyone"}
    else:
        payload = _MOCK_CONTENT
    rid = f"mock-{model}-{int(time.time() * 1000)}"
    return {"text": json.dumps(payload), "model": model, "response_id": rid, "raw": {"mock": True}}
