#!/usr/bin/env python3
"""
Unit tests for the chat assistant client and prompt builder.

The HTTP session is mocked; no request leaves the process.

Run with: python -m pytest tests/test_chat.py -v
"""

import os
import unittest
from unittest.mock import Mock, patch

import requests

import fake_runtime  # noqa: F401  (puts src/ on the path)

from robodoc.config import ChatSettings
from robodoc.errors import NetworkError
from robodoc.llm.chat_client import ChatClient
from robodoc.llm.prompt_builder import (
    DEFAULT_SYSTEM_PROMPT, PromptBuilder, detect_language, validate_messages
)


def make_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = payload if payload is not None else {}
    return response


def completion(content):
    return {'choices': [{'message': {'role': 'assistant', 'content': content}}]}


class TestPromptBuilder(unittest.TestCase):
    """Tests for message building and language detection."""

    def test_detect_language(self):
        self.assertEqual(detect_language('What causes dry skin?'), 'en')
        self.assertEqual(detect_language('ما سبب جفاف الجلد؟'), 'ar')
        self.assertEqual(detect_language('skin جلد'), 'ar')
        self.assertEqual(detect_language(''), 'en')

    def test_system_prompt_first(self):
        builder = PromptBuilder()
        messages = builder.build_messages('Hello')

        self.assertEqual(messages[0], {'role': 'system', 'content': DEFAULT_SYSTEM_PROMPT})
        self.assertEqual(messages[-1], {'role': 'user', 'content': 'Hello'})
        self.assertIn('Robodoc', messages[0]['content'])

    def test_history_kept_in_order(self):
        builder = PromptBuilder('Be brief.')
        history = [
            {'role': 'user', 'content': 'Hi'},
            {'role': 'assistant', 'content': 'Hello!'},
        ]
        messages = builder.build_messages('How are you?', history)

        self.assertEqual([m['role'] for m in messages],
                         ['system', 'user', 'assistant', 'user'])
        self.assertEqual(messages[0]['content'], 'Be brief.')

    def test_failure_message_localized(self):
        builder = PromptBuilder()
        error = NetworkError('Network Error: timeout')

        english = builder.failure_message(error, 'hello')
        arabic = builder.failure_message(error, 'مرحبا')

        self.assertEqual(english, 'Sorry, something went wrong: Network Error: timeout')
        self.assertTrue(arabic.startswith('عذرا'))
        self.assertIn('Network Error: timeout', arabic)

    def test_validate_messages(self):
        messages = [{'role': 'user', 'content': 'Hi'}]
        self.assertIs(validate_messages(messages), messages)

        for bad in (None, [], 'Hi', [{'role': 'robot', 'content': 'x'}],
                    [{'role': 'user'}], ['Hi']):
            with self.assertRaises(ValueError):
                validate_messages(bad)


class TestChatClient(unittest.TestCase):
    """Tests for the chat completion client."""

    def setUp(self):
        self.session = Mock()
        self.client = ChatClient(ChatSettings(), api_key='test-key', session=self.session)
        self.messages = [{'role': 'user', 'content': 'Hi'}]

    def test_payload_uses_fixed_settings(self):
        self.session.post.return_value = make_response(payload=completion('Hello'))

        self.client.create_chat_completion(self.messages)

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], 'https://api.groq.com/openai/v1/chat/completions')
        payload = kwargs['json']
        self.assertEqual(payload['messages'], self.messages)
        self.assertEqual(payload['model'], 'meta-llama/llama-4-maverick-17b-128e-instruct')
        self.assertEqual(payload['temperature'], 0.5)
        self.assertEqual(payload['max_tokens'], 1024)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer test-key')

    def test_returns_decoded_completion(self):
        self.session.post.return_value = make_response(payload=completion('Hello'))

        data = self.client.create_chat_completion(self.messages)

        self.assertEqual(data['choices'][0]['message']['content'], 'Hello')

    def test_non_ok_status(self):
        self.session.post.return_value = make_response(status_code=429)

        with self.assertRaises(NetworkError) as ctx:
            self.client.create_chat_completion(self.messages)

        self.assertEqual(str(ctx.exception), 'Network Error: API Error: 429')
        self.assertEqual(self.client.get_stats()['failed_requests'], 1)

    def test_transport_failure(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError('refused')

        with self.assertRaises(NetworkError) as ctx:
            self.client.create_chat_completion(self.messages)

        self.assertTrue(str(ctx.exception).startswith('Network Error: '))
        self.assertIn('refused', str(ctx.exception))

    def test_invalid_json(self):
        response = make_response()
        response.json.side_effect = ValueError('Expecting value')
        self.session.post.return_value = response

        with self.assertRaises(NetworkError):
            self.client.create_chat_completion(self.messages)

    def test_reply(self):
        self.session.post.return_value = make_response(payload=completion('Drink water.'))

        answer = self.client.reply('How do I keep my skin healthy?')

        self.assertEqual(answer, 'Drink water.')
        sent = self.session.post.call_args[1]['json']['messages']
        self.assertEqual(sent[0]['role'], 'system')
        self.assertEqual(sent[-1]['content'], 'How do I keep my skin healthy?')

    def test_reply_malformed_response(self):
        self.session.post.return_value = make_response(payload={'choices': []})

        with self.assertRaises(NetworkError):
            self.client.reply('Hello')

    def test_api_key_from_environment(self):
        settings = ChatSettings(api_key_env='ROBODOC_TEST_CHAT_KEY')
        with patch.dict('os.environ', {'ROBODOC_TEST_CHAT_KEY': 'env-key'}):
            client = ChatClient(settings, session=self.session)

        self.assertTrue(client.is_configured())
        self.assertEqual(client.api_key, 'env-key')

    def test_missing_api_key(self):
        settings = ChatSettings(api_key_env='ROBODOC_TEST_UNSET_KEY')
        with patch.dict('os.environ', {}):
            os.environ.pop('ROBODOC_TEST_UNSET_KEY', None)
            with self.assertLogs('robodoc.llm.chat_client', level='WARNING'):
                client = ChatClient(settings, session=self.session)

        self.assertFalse(client.is_configured())


if __name__ == '__main__':
    unittest.main(verbosity=2)
