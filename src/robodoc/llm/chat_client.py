#!/usr/bin/env python3
"""
Chat Completion Client for the RoboDoc Assistant

Forwards role-tagged messages to a hosted OpenAI-compatible chat completion
endpoint (Groq by default) with a fixed model, temperature and token budget.

No retries, no caching: a failed request is reported once and the user
retries manually.

Author: RoboDoc Team
License: MIT
"""

import os
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config import ChatSettings
from ..errors import NetworkError
from .prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


class ChatClient:
    """
    Client for the hosted chat completion API.

    Attributes:
        settings: Endpoint, model, temperature, token budget, key env var
        api_key: Bearer token (from the environment unless given)
        prompt_builder: Builds the assistant's message list
    """

    def __init__(
        self,
        settings: Optional[ChatSettings] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None
    ) -> None:
        self.settings = settings or ChatSettings()
        self.api_key = api_key or os.environ.get(self.settings.api_key_env)
        self.session = session or requests.Session()
        self.prompt_builder = PromptBuilder(self.settings.system_prompt)

        if not self.api_key:
            logger.warning(
                f"API key not found in environment variable {self.settings.api_key_env}"
            )

        # Statistics
        self.total_requests = 0
        self.failed_requests = 0

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def build_payload(self, messages: Sequence[Dict[str, str]]) -> Dict[str, Any]:
        return {
            'messages': list(messages),
            'model': self.settings.model,
            'temperature': self.settings.temperature,
            'max_tokens': self.settings.max_tokens,
        }

    def create_chat_completion(
        self,
        messages: Sequence[Dict[str, str]],
        api_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Forward messages to the chat completion endpoint.

        Args:
            messages: Role-tagged messages, forwarded verbatim
            api_key: Overrides the configured key for this call

        Returns:
            Decoded completion response

        Raises:
            NetworkError: On transport failure or a non-2xx response
        """
        self.total_requests += 1
        headers = {
            'Authorization': f"Bearer {api_key or self.api_key}",
            'Content-Type': 'application/json; charset=UTF-8',
            'Accept': 'application/json; charset=UTF-8',
        }

        try:
            response = self.session.post(
                self.settings.endpoint,
                json=self.build_payload(messages),
                headers=headers,
                timeout=self.settings.timeout_seconds
            )
            if not response.ok:
                raise NetworkError(f"Network Error: API Error: {response.status_code}")
            return response.json()

        except NetworkError as e:
            self.failed_requests += 1
            logger.error(f"Chat completion failed: {e}")
            raise
        except (requests.exceptions.RequestException, ValueError) as e:
            self.failed_requests += 1
            logger.error(f"Chat completion failed: {e}")
            raise NetworkError(f"Network Error: {e}") from e

    def reply(self, text: str, history: Optional[List[Dict[str, str]]] = None) -> str:
        """
        Ask the assistant one question.

        Args:
            text: The user's message
            history: Earlier turns, oldest first

        Returns:
            The assistant's answer

        Raises:
            NetworkError: If the request fails or the response has no answer
        """
        messages = self.prompt_builder.build_messages(text, history)
        data = self.create_chat_completion(messages)

        try:
            return data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            self.failed_requests += 1
            raise NetworkError("Network Error: malformed completion response") from e

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_requests': self.total_requests,
            'failed_requests': self.failed_requests,
            'api_configured': self.is_configured(),
            'model': self.settings.model
        }
