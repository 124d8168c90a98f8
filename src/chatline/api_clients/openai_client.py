"""OpenAI chat-completion gateway.

One call to :meth:`OpenAIGateway.complete` makes exactly one request to
the upstream API: the SDK's built-in retries are disabled and a request
deadline is applied. Retrying is left to callers.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from chatline.chat.models import TranscriptTurn
from chatline.errors import UpstreamRejected, UpstreamUnavailable

logger = logging.getLogger(__name__)

EMPTY_REPLY_FALLBACK = "I'm sorry, I had trouble thinking of a response."


class OpenAIGateway:
    """Sends a transcript to the language model and returns its reply."""

    def __init__(
        self,
        api_key: Optional[str],
        system_prompt: str,
        model: str = "gpt-4o-mini",
        timeout: float = 8.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize the gateway.

        Args:
            api_key: OpenAI API key. Without one (and without ``client``)
                every call fails with UpstreamUnavailable.
            system_prompt: Instruction prepended to every transcript.
            model: Chat completion model name.
            timeout: Deadline in seconds for the upstream call.
            client: Pre-built client, mainly for tests.
        """
        self.system_prompt = system_prompt
        self.model = model
        self.timeout = timeout
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        else:
            self.client = None

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def build_messages(self, transcript: Sequence[TranscriptTurn]) -> List[Dict[str, str]]:
        """Prefix the system instruction and map roles to API roles."""
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": self.system_prompt}
        ]
        for turn in transcript:
            messages.append({"role": turn.role.openai_role, "content": turn.text})
        return messages

    async def complete(self, transcript: Sequence[TranscriptTurn]) -> str:
        """Get the assistant's reply to ``transcript`` (oldest turn first).

        Returns:
            Reply text; EMPTY_REPLY_FALLBACK when the model returns nothing.

        Raises:
            UpstreamUnavailable: Network failure, timeout, or no API key.
            UpstreamRejected: The API answered with an error status.
        """
        if self.client is None:
            raise UpstreamUnavailable("AI backend is not configured")

        messages = self.build_messages(transcript)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                timeout=self.timeout,
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            logger.warning("AI backend unavailable: %s", e)
            raise UpstreamUnavailable("AI backend unavailable") from e
        except openai.APIStatusError as e:
            logger.warning("AI backend rejected request with status %s", e.status_code)
            raise UpstreamRejected(
                "AI backend rejected the request",
                details={"status": e.status_code},
            ) from e
        except openai.OpenAIError as e:
            logger.warning("AI backend error: %s", e)
            raise UpstreamRejected("AI backend error") from e

        reply = None
        if response.choices:
            reply = response.choices[0].message.content
        if not reply or not reply.strip():
            logger.info("AI backend returned an empty reply; using fallback text")
            return EMPTY_REPLY_FALLBACK
        return reply


AIGateway = OpenAIGateway
