#!/usr/bin/env python3
"""
Prompt Builder for the RoboDoc Chat Assistant

Builds the message list sent to the chat completion API and the localized
texts shown around it. Arabic input gets Arabic error messages; the system
prompt asks the model to answer Arabic in Egyptian dialect.

Author: RoboDoc Team
License: MIT
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

ARABIC_PATTERN = re.compile('[\u0600-\u06FF]')

DEFAULT_SYSTEM_PROMPT = (
    "You are named Robodoc. Please respond to all queries as if you are "
    "Robodoc, a knowledgeable and helpful assistant, keep your responses very "
    "short but informative. If the input is in Arabic, respond in Egyptian "
    "Arabic dialect."
)

WELCOME_MESSAGE = (
    "Welcome to RoboDoc! Start typing in English or Arabic, "
    "and I’ll respond accordingly."
)

FAILURE_TEMPLATES = {
    'en': "Sorry, something went wrong: {error}",
    'ar': "عذرا، حدث خطأ: {error}",
}

ROLES = ('system', 'user', 'assistant')


def detect_language(text: str) -> str:
    """Return "ar" if the text contains Arabic script, otherwise "en"."""
    return 'ar' if ARABIC_PATTERN.search(text or '') else 'en'


class PromptBuilder:
    """
    Builds chat completion requests for the assistant.

    Attributes:
        system_prompt: Instruction prepended to every conversation
    """

    def __init__(self, system_prompt: Optional[str] = None) -> None:
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT

    def build_messages(
        self,
        text: str,
        history: Optional[Sequence[Dict[str, str]]] = None
    ) -> List[Dict[str, str]]:
        """
        Build the role-tagged message list for one user turn.

        Args:
            text: The user's message
            history: Earlier user/assistant turns, oldest first

        Returns:
            Messages starting with the system prompt and ending with the user turn
        """
        messages = [{'role': 'system', 'content': self.system_prompt}]
        for turn in history or []:
            messages.append({'role': turn['role'], 'content': turn['content']})
        messages.append({'role': 'user', 'content': text})
        return messages

    def failure_message(self, error: Exception, text: str = '') -> str:
        """Localized message shown when the assistant cannot answer."""
        template = FAILURE_TEMPLATES[detect_language(text)]
        return template.format(error=error)


def validate_messages(messages: object) -> List[Dict[str, str]]:
    """
    Check a client-supplied message list before forwarding it.

    Raises:
        ValueError: If the list is empty or an entry is not a role-tagged message
    """
    if not isinstance(messages, list) or not messages:
        raise ValueError("messages must be a non-empty list")

    for message in messages:
        if not isinstance(message, dict):
            raise ValueError("each message must be an object")
        if message.get('role') not in ROLES:
            raise ValueError(f"invalid role: {message.get('role')!r}")
        if not isinstance(message.get('content'), str):
            raise ValueError("message content must be a string")

    return messages
