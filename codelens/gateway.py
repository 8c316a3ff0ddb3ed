"""
Client for the OpenAI-compatible chat-completions gateway.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from codelens.errors import GatewayError, StreamFailedError, error_for_status
from codelens.streaming import decode_stream

Message = Dict[str, str]


class GatewayClient:
    """Sends role-tagged message lists to the AI gateway."""

    def __init__(self, url: str, api_key: str, model: str, timeout: float = 60.0):
        """
        Args:
            url: Full chat-completions endpoint URL.
            api_key: Bearer token for the gateway.
            model: Model identifier passed through to the gateway.
            timeout: Request timeout in seconds.
        """
        self._url = url
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "GatewayClient":
        return cls(
            url=settings.AI_GATEWAY_URL,
            api_key=settings.AI_GATEWAY_API_KEY,
            model=settings.MODEL_NAME,
            timeout=settings.REQUEST_TIMEOUT,
        )

    @property
    def model(self) -> str:
        return self._model

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _payload(
        self,
        messages: List[Message],
        stream: bool,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self._model, "messages": messages}
        if stream:
            payload["stream"] = True
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    async def complete(self, messages: List[Message], temperature: Optional[float] = None) -> str:
        """
        Request a single, non-streamed completion.

        Returns:
            The text of ``choices[0].message.content``.

        Raises:
            RateLimitError, QuotaExceededError: the gateway reported a
                capacity problem.
            StreamFailedError: the request could not be completed.
            GatewayError: any other non-success response.
        """
        payload = self._payload(messages, stream=False, temperature=temperature)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            logging.error(f"AI gateway request failed: {e}")
            raise StreamFailedError(f"Request failed: {e}", retryable=True) from e

        if response.status_code != 200:
            logging.error(f"AI gateway error: {response.status_code} {response.text}")
            raise error_for_status(response.status_code, response.text, response.headers)

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError("AI gateway returned a non-JSON body") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not content:
            raise GatewayError("No response from AI")
        return content

    async def stream(self, messages: List[Message], temperature: Optional[float] = None) -> AsyncIterator[str]:
        """
        Request a streamed completion and yield its text deltas in order.

        Status errors are raised before the first delta. Closing the iterator
        early closes the connection and drops any undecoded text.
        """
        payload = self._payload(messages, stream=True, temperature=temperature)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", self._url, headers=self._headers(), json=payload) as response:
                    if response.status_code != 200:
                        body = (await response.aread()).decode("utf-8", errors="ignore")
                        logging.error(f"AI gateway stream error: {response.status_code} {body}")
                        raise error_for_status(response.status_code, body, response.headers)

                    async for delta in decode_stream(response.aiter_text()):
                        yield delta
        except httpx.HTTPError as e:
            logging.error(f"AI gateway stream failed: {e}")
            raise StreamFailedError(f"Stream failed: {e}", retryable=True) from e
