"""
Remote reply client.

POST {"prompt": transcript} to the reply endpoint and parse
{"response": str, "audio"?: base64 str}.

Failure mapping:
- unreachable / timeout / non-2xx          -> TransportError
- non-JSON body, wrong shape, bad base64   -> MalformedResponseError
- blank text and no audio                  -> NoContentError

Never retries, never streams. The reducer applies the same NO_CONTENT
rule to any ReplyReceived it is handed.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

import httpx

from adapters.errors import MalformedResponseError, NoContentError, TransportError
from constants import (
    REPLY_AUDIO_FIELD,
    REPLY_PROMPT_FIELD,
    REPLY_TEXT_FIELD,
    REPLY_TIMEOUT_S_DEFAULT,
)


@dataclass(frozen=True)
class Reply:
    reply_text: str
    reply_audio: bytes | None = None


class ReplyClient:
    """
    Thin async client over one endpoint URL.

    The underlying httpx.AsyncClient is created lazily and reused across
    requests; pass `client` to inject one (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        endpoint_url: str,
        timeout_s: float = REPLY_TIMEOUT_S_DEFAULT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._timeout_s = timeout_s
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    async def send(self, transcript: str) -> Reply:
        """
        Request a reply for transcript.

        Raises:
            TransportError, MalformedResponseError, NoContentError
        """
        client = self._get_client()
        try:
            response = await client.post(
                self._endpoint_url,
                json={REPLY_PROMPT_FIELD: transcript},
                timeout=self._timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"reply endpoint timed out after {self._timeout_s}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"reply endpoint unreachable: {type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"reply endpoint answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError("reply body is not JSON") from exc

        return parse_reply(body)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
            self._owns_client = True
        return self._client


def parse_reply(body: Any) -> Reply:
    """Validate the decoded JSON body shape."""
    if not isinstance(body, dict):
        raise MalformedResponseError(f"reply body must be an object, got {type(body).__name__}")

    if REPLY_TEXT_FIELD not in body:
        raise MalformedResponseError(f"reply body has no {REPLY_TEXT_FIELD!r} field")

    text = body[REPLY_TEXT_FIELD]
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise MalformedResponseError(
            f"{REPLY_TEXT_FIELD!r} must be a string, got {type(text).__name__}"
        )

    audio = _decode_audio_field(body.get(REPLY_AUDIO_FIELD))
    if not text.strip() and audio is None:
        raise NoContentError("reply had neither text nor audio")

    return Reply(reply_text=text, reply_audio=audio)


def _decode_audio_field(raw: Any) -> bytes | None:
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise MalformedResponseError(
            f"{REPLY_AUDIO_FIELD!r} must be a base64 string, got {type(raw).__name__}"
        )
    try:
        audio = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedResponseError(f"{REPLY_AUDIO_FIELD!r} is not valid base64") from exc
    return audio or None
