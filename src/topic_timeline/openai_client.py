from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Type

import httpx
import openai
from dotenv import load_dotenv
from openai import OpenAI
from pydantic import BaseModel

from .config import AppConfig
from .errors import CompletionError, UpstreamAuthError
from .schemas import response_format

logger = logging.getLogger(__name__)


def openai_api_key() -> str:
    load_dotenv(".env")
    key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not key:
        raise UpstreamAuthError("Missing OPENAI_API_KEY in .env")
    return key


class CompletionClient:
    """
    Thin wrapper over the OpenAI chat completions endpoint.

    The SDK's own retries are disabled: a failed or hung call raises
    CompletionError right away so the caller can move to its next tier.
    Construct one per process and pass it in; nothing here is global.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        timeout_s: float = 90.0,
        connect_timeout_s: float = 10.0,
        sdk: Optional[Any] = None,
    ):
        self.model = model
        self._sdk = sdk or OpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_s, connect=connect_timeout_s),
            max_retries=0,
        )

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "CompletionClient":
        return cls(
            openai_api_key(),
            cfg.openai_model,
            timeout_s=cfg.request_timeout_s,
            connect_timeout_s=cfg.connect_timeout_s,
        )

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        shape: Optional[Type[BaseModel]] = None,
        temperature: float = 0.7,
        max_tokens: int = 3000,
        model: Optional[str] = None,
    ) -> str:
        """
        Returns the raw reply text. With *shape*, the reply is requested as
        structured output for that model; the text still has to be parsed and
        validated by the caller.
        """
        kwargs: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if shape is not None:
            kwargs["response_format"] = response_format(shape)

        try:
            resp = self._sdk.chat.completions.create(**kwargs)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise UpstreamAuthError(f"OpenAI rejected credentials: {e}") from e
        except openai.APIError as e:
            raise CompletionError(f"OpenAI call failed: {e}") from e

        if not resp.choices:
            raise CompletionError("OpenAI returned no choices")
        choice = resp.choices[0]
        content = (choice.message.content or "").strip()
        if getattr(choice, "finish_reason", None) == "length":
            logger.warning("completion truncated at max_tokens=%s (model=%s)", max_tokens, kwargs["model"])
        if not content:
            raise CompletionError("OpenAI returned an empty reply")
        return content
