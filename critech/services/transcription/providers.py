"""
Critech transcription and summarization provider (OpenAI).

Whisper turns the audio-only rendition into text, a chat completion turns
the text into a short summary. The same chat endpoint also serves the
Topic market summaries (JSON mode).
"""
from __future__ import annotations

import json
import logging
from pathlib import PurePosixPath
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import openai
from openai import AsyncOpenAI

from critech.core.config import Settings, get_settings
from critech.core.errors import ProviderError

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert at summarizing audio transcripts, able to extract key "
    "points and present them in a concise and energetic manner."
)
SUMMARY_USER_PROMPT = (
    "Please provide a concise summary of this transcript, highlighting the "
    "main points and key takeaways:\n\n{transcript}"
)


def _provider_error(exc: Exception, what: str) -> ProviderError:
    """Map an SDK exception; client-side 4xx (other than 429) is not worth retrying."""
    retryable = True
    status = None
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        retryable = status >= 500 or status == 429
    return ProviderError(
        f"{what} failed",
        details={"reason": str(exc), "providerStatus": status},
        retryable=retryable,
    )


class OpenAIProvider:
    """Thin async wrapper over the OpenAI audio and chat endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[AsyncOpenAI] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings()
        self._client = client
        self._http_transport = http_transport

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            s = self._settings
            self._client = AsyncOpenAI(
                api_key=s.openai_api_key,
                base_url=s.openai_base_url,
                timeout=s.provider_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def fetch_audio(self, audio_url: str) -> bytes:
        """Download the audio rendition produced by the media provider."""
        s = self._settings
        timeout = httpx.Timeout(s.provider_timeout_seconds, connect=s.provider_connect_timeout_seconds)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._http_transport, follow_redirects=True) as http:
                response = await http.get(audio_url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                "Audio download failed",
                details={"audioUrl": audio_url, "providerStatus": e.response.status_code},
                retryable=e.response.status_code >= 500 or e.response.status_code == 404,
            )
        except httpx.HTTPError as e:
            raise ProviderError("Audio download failed", details={"audioUrl": audio_url, "reason": str(e)})
        return response.content

    async def transcribe(self, audio_url: str) -> str:
        audio = await self.fetch_audio(audio_url)
        filename = PurePosixPath(urlparse(audio_url).path).name or "audio.mp3"
        logger.info(f"Transcribing {filename} ({len(audio)} bytes)")
        try:
            result = await self.client.audio.transcriptions.create(
                model=self._settings.transcription_model,
                file=(filename, audio),
            )
        except openai.APIError as e:
            raise _provider_error(e, "Transcription")
        return (result.text or "").strip()

    async def summarize(self, transcript: str) -> str:
        s = self._settings
        try:
            response = await self.client.chat.completions.create(
                model=s.summary_model,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": SUMMARY_USER_PROMPT.format(transcript=transcript)},
                ],
                temperature=s.summary_temperature,
                max_tokens=s.summary_max_tokens,
            )
        except openai.APIError as e:
            raise _provider_error(e, "Summarization")
        return (response.choices[0].message.content or "").strip()

    async def complete_json(self, system: str, user: str, max_tokens: Optional[int] = None) -> Dict[str, Any]:
        """Chat completion constrained to a JSON object."""
        s = self._settings
        try:
            response = await self.client.chat.completions.create(
                model=s.summary_model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=s.summary_temperature,
                max_tokens=max_tokens or s.market_summary_max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APIError as e:
            raise _provider_error(e, "Completion")

        content = response.choices[0].message.content or ""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            raise ProviderError("Completion was not valid JSON", details={"content": content[:200]}, retryable=False)
        if not isinstance(parsed, dict):
            raise ProviderError("Completion was not a JSON object", retryable=False)
        return parsed


openai_provider = OpenAIProvider()
