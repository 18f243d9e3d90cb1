"""
Review client: one outbound call to a text-generation service.

Supported providers:
- modelslab: JSON POST of {key, messages, max_tokens}, reply text in "message"
- openai: chat completions through the official SDK
- anthropic: ChatAnthropic through LangChain

No retries and no backoff. A non-success answer or a transport failure is
raised as TransportError; the caller decides what happens next.
"""

import logging
from typing import Dict, List, Optional

import requests

from code_roast.config import Settings, DEFAULT_MODELSLAB_ENDPOINT
from code_roast.errors import TransportError
from code_roast.prompts import MAX_OUTPUT_TOKENS

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "modelslab": None,
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-latest",
}


class ReviewClient:
    """Sends role-tagged messages to the configured provider and returns raw text."""

    def __init__(
        self,
        provider: str = "modelslab",
        api_key: Optional[str] = None,
        endpoint: str = DEFAULT_MODELSLAB_ENDPOINT,
        model: Optional[str] = None,
        timeout: float = 30.0,
        http: Optional[requests.Session] = None,
    ):
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported LLM provider: {provider}")
        self.provider = provider
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model or DEFAULT_MODELS[provider]
        self.timeout = timeout
        self._http = http or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReviewClient":
        return cls(
            provider=settings.llm_provider,
            api_key=settings.llm_api_key,
            endpoint=settings.llm_endpoint,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        )

    def complete(self, messages: List[Dict[str, str]], max_tokens: int = MAX_OUTPUT_TOKENS) -> str:
        """
        Issue a single call and return the raw textual payload.

        Raises TransportError on a non-2xx status, timeout or connection
        failure.
        """
        if self.provider == "openai":
            return self._call_openai(messages, max_tokens)
        if self.provider == "anthropic":
            return self._call_anthropic(messages, max_tokens)
        return self._call_modelslab(messages, max_tokens)

    def _call_modelslab(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        payload = {
            "key": self.api_key,
            "messages": messages,
            "max_tokens": max_tokens,
        }
        if self.model:
            payload["model"] = self.model

        try:
            response = self._http.post(self.endpoint, json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise TransportError("Review service timed out") from e
        except requests.RequestException as e:
            raise TransportError(f"Review service unreachable: {e.__class__.__name__}") from e

        if not response.ok:
            logger.warning("Review service answered %s", response.status_code)
            raise TransportError(
                f"Review service error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError("Review service returned a non-JSON body",
                                 status_code=response.status_code) from e

        message = data.get("message") if isinstance(data, dict) else None
        return message if isinstance(message, str) else ""

    def _call_openai(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        import openai

        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as e:
            logger.warning("OpenAI answered %s", e.status_code)
            raise TransportError(f"Review service error: {e.status_code}",
                                 status_code=e.status_code) from e
        except openai.APITimeoutError as e:
            raise TransportError("Review service timed out") from e
        except openai.APIConnectionError as e:
            raise TransportError("Review service unreachable") from e

        return response.choices[0].message.content or ""

    def _call_anthropic(self, messages: List[Dict[str, str]], max_tokens: int) -> str:
        from langchain_anthropic import ChatAnthropic
        from langchain_core.messages import HumanMessage, SystemMessage, AIMessage

        llm = ChatAnthropic(
            model=self.model,
            api_key=self.api_key,
            max_tokens=max_tokens,
            timeout=self.timeout,
            max_retries=0,
        )

        converted = []
        for m in messages:
            if m["role"] == "system":
                converted.append(SystemMessage(content=m["content"]))
            elif m["role"] == "assistant":
                converted.append(AIMessage(content=m["content"]))
            else:
                converted.append(HumanMessage(content=m["content"]))

        try:
            response = llm.invoke(converted)
        except Exception as e:
            status = getattr(e, "status_code", None)
            logger.warning("Anthropic (LangChain) call failed: %s", e.__class__.__name__)
            raise TransportError(
                f"Review service error: {status}" if status else "Review service unreachable",
                status_code=status,
            ) from e

        content = response.content
        if isinstance(content, list):
            # Content blocks: keep the text parts in order
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return content or ""
