"""
Unit tests for provider adapters (SDKs and HTTP mocked; no network).
"""

import json
import unittest
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai

from study.services.ai.config import AIConfig
from study.services.ai.gemini_provider import GeminiProvider, _convert_messages
from study.services.ai.ollama_provider import OllamaProvider
from study.services.ai.openai_provider import OpenAIProvider, OpenRouterProvider
from study.services.ai.router import AIRouter
from study.services.ai.schemas import ChatOptions, Message, TokenKind
from study.services.base import (
    InvalidArgument,
    ProviderRequestFailed,
    ProviderTimeout,
    ProviderUnavailable,
)

from .fakes import FakeProvider

_REQUEST = httpx.Request('POST', 'https://api.example.test/v1/chat/completions')


def _completion(text='Hello!', model='gpt-4o-mini-2024-07-18'):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3, total_tokens=15),
        model=model,
    )


# ---------------------------------------------------------------------------
# OpenAI / OpenRouter
# ---------------------------------------------------------------------------

class TestOpenAIProvider(unittest.TestCase):
    def setUp(self):
        patcher = patch('openai.OpenAI')
        self.openai_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.openai_cls.return_value

    def test_chat_maps_response(self):
        self.client.chat.completions.create.return_value = _completion()
        provider = OpenAIProvider(api_key='sk-test')
        response = provider.chat([Message('user', 'Hi')], ChatOptions(temperature=0.3, max_tokens=20))

        self.assertEqual(response.content, 'Hello!')
        self.assertEqual(response.model, 'gpt-4o-mini-2024-07-18')
        self.assertEqual(response.usage.prompt_tokens, 12)
        self.assertEqual(response.provider, 'openai')
        kwargs = self.client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs['model'], 'gpt-4o-mini')
        self.assertEqual(kwargs['messages'], [{'role': 'user', 'content': 'Hi'}])
        self.assertEqual(kwargs['temperature'], 0.3)
        self.assertEqual(kwargs['max_tokens'], 20)

    def test_client_disables_sdk_retries(self):
        self.client.chat.completions.create.return_value = _completion()
        OpenAIProvider(api_key='sk-test', timeout=12).chat([Message('user', 'Hi')])
        kwargs = self.openai_cls.call_args.kwargs
        self.assertEqual(kwargs['max_retries'], 0)
        self.assertEqual(kwargs['timeout'], 12)

    def test_chat_with_empty_choices_returns_empty_text(self):
        completion = _completion()
        completion.choices = []
        self.client.chat.completions.create.return_value = completion
        response = OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])
        self.assertEqual(response.content, '')

    def test_streaming_is_aggregated(self):
        chunks = [
            SimpleNamespace(model='m', choices=[SimpleNamespace(delta=SimpleNamespace(content='Hel'))], usage=None),
            SimpleNamespace(model='m', choices=[SimpleNamespace(delta=SimpleNamespace(content='lo'))], usage=None),
            SimpleNamespace(
                model='m', choices=[],
                usage=SimpleNamespace(prompt_tokens=4, completion_tokens=2, total_tokens=6),
            ),
        ]
        self.client.chat.completions.create.return_value = iter(chunks)
        response = OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')], ChatOptions(stream=True))
        self.assertEqual(response.content, 'Hello')
        self.assertEqual(response.usage.total_tokens, 6)
        self.assertTrue(self.client.chat.completions.create.call_args.kwargs['stream'])

    def test_missing_key_is_unavailable(self):
        provider = OpenAIProvider(api_key='')
        with self.assertRaises(ProviderUnavailable):
            provider.chat([Message('user', 'Hi')])
        self.assertFalse(provider.is_available())
        self.openai_cls.assert_not_called()

    def test_timeout_translated(self):
        self.client.chat.completions.create.side_effect = openai.APITimeoutError(request=_REQUEST)
        with self.assertRaises(ProviderTimeout):
            OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])

    def test_connection_error_translated(self):
        self.client.chat.completions.create.side_effect = openai.APIConnectionError(request=_REQUEST)
        with self.assertRaises(ProviderUnavailable):
            OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])

    def test_server_error_is_unavailable(self):
        self.client.chat.completions.create.side_effect = openai.InternalServerError(
            'boom', response=httpx.Response(503, request=_REQUEST), body=None,
        )
        with self.assertRaises(ProviderUnavailable):
            OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])

    def test_bad_request_is_request_failed(self):
        self.client.chat.completions.create.side_effect = openai.BadRequestError(
            'bad', response=httpx.Response(400, request=_REQUEST), body=None,
        )
        with self.assertRaises(ProviderRequestFailed):
            OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])

    def test_auth_error_is_unavailable(self):
        self.client.chat.completions.create.side_effect = openai.AuthenticationError(
            'nope', response=httpx.Response(401, request=_REQUEST), body=None,
        )
        with self.assertRaises(ProviderUnavailable):
            OpenAIProvider(api_key='sk-test').chat([Message('user', 'Hi')])

    def test_embed_orders_by_index(self):
        self.client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ],
            usage=SimpleNamespace(prompt_tokens=4, total_tokens=4),
            model='text-embedding-3-small',
        )
        response = OpenAIProvider(api_key='sk-test').embed(['first', 'second'])
        self.assertEqual(response.embeddings, [[1.0, 0.0], [0.0, 1.0]])
        self.assertEqual(response.usage.total_tokens, 4)

    def test_embed_requires_input(self):
        with self.assertRaises(InvalidArgument):
            OpenAIProvider(api_key='sk-test').embed([])

    def test_is_available_lists_models(self):
        self.assertTrue(OpenAIProvider(api_key='sk-test').is_available())
        self.client.models.list.assert_called_once()

    def test_is_available_false_on_sdk_error(self):
        self.client.models.list.side_effect = openai.APIConnectionError(request=_REQUEST)
        self.assertFalse(OpenAIProvider(api_key='sk-test').is_available())

    def test_repr_hides_api_key(self):
        self.assertNotIn('sk-secret', repr(OpenAIProvider(api_key='sk-secret')))

    def test_get_cost_uses_per_million_pricing(self):
        provider = OpenAIProvider(api_key='sk-test')
        self.assertEqual(provider.get_cost(1_000_000, TokenKind.INPUT), Decimal('0.15'))
        self.assertEqual(provider.get_cost(2_000, 'output'), Decimal('0.0012'))
        self.assertEqual(provider.get_cost(0, TokenKind.EMBEDDING), Decimal('0'))


class TestOpenRouterProvider(unittest.TestCase):
    @patch('openai.OpenAI')
    def test_uses_openrouter_base_url_and_default_model(self, openai_cls):
        openai_cls.return_value.chat.completions.create.return_value = _completion(model='')
        provider = OpenRouterProvider(api_key='or-test')
        response = provider.chat([Message('user', 'Hi')])

        self.assertEqual(openai_cls.call_args.kwargs['base_url'], 'https://openrouter.ai/api/v1')
        self.assertEqual(response.model, 'anthropic/claude-3-haiku')
        self.assertEqual(response.provider, 'openrouter')

    def test_default_pricing(self):
        provider = OpenRouterProvider(api_key='or-test')
        self.assertEqual(provider.get_cost(1_000_000, TokenKind.OUTPUT), Decimal('1.25'))


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------

class TestOllamaProvider(unittest.TestCase):
    def _provider(self, handler, **kwargs):
        provider = OllamaProvider(base_url='http://ollama.test', **kwargs)
        transport = httpx.MockTransport(handler)
        provider._http = lambda: httpx.Client(base_url=provider.base_url, transport=transport)
        return provider

    def test_chat_payload_and_response(self):
        seen = {}

        def handler(request):
            seen['path'] = request.url.path
            seen['body'] = json.loads(request.content)
            return httpx.Response(200, json={
                'model': 'llama3.1:8b',
                'message': {'role': 'assistant', 'content': 'Local answer'},
                'prompt_eval_count': 20,
                'eval_count': 7,
            })

        response = self._provider(handler).chat([Message('user', 'Hi')], ChatOptions(max_tokens=50))

        self.assertEqual(seen['path'], '/api/chat')
        self.assertFalse(seen['body']['stream'])
        self.assertEqual(seen['body']['options'], {'temperature': 0.7, 'num_predict': 50})
        self.assertEqual(response.content, 'Local answer')
        self.assertEqual(response.usage.total_tokens, 27)
        self.assertEqual(response.provider, 'ollama')

    def test_chat_is_free(self):
        provider = OllamaProvider()
        self.assertEqual(provider.get_cost(1_000_000, TokenKind.INPUT), Decimal('0'))
        self.assertEqual(provider.get_cost(1_000_000, TokenKind.OUTPUT), Decimal('0'))

    def test_embed_one_request_per_text(self):
        prompts = []

        def handler(request):
            body = json.loads(request.content)
            prompts.append(body['prompt'])
            return httpx.Response(200, json={'embedding': [float(len(body['prompt'])), 0.0]})

        response = self._provider(handler).embed(['ab', 'abcd'])
        self.assertEqual(prompts, ['ab', 'abcd'])
        self.assertEqual(response.embeddings, [[2.0, 0.0], [4.0, 0.0]])
        self.assertEqual(response.model, 'nomic-embed-text')

    def test_missing_embedding_is_request_failed(self):
        provider = self._provider(lambda request: httpx.Response(200, json={}))
        with self.assertRaises(ProviderRequestFailed):
            provider.embed(['text'])

    def test_timeout_translated(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        with self.assertRaises(ProviderTimeout):
            self._provider(handler).chat([Message('user', 'Hi')])

    def test_connection_refused_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        provider = self._provider(handler)
        with self.assertRaises(ProviderUnavailable):
            provider.chat([Message('user', 'Hi')])
        self.assertFalse(provider.is_available())

    def test_status_errors_translated(self):
        with self.assertRaises(ProviderUnavailable):
            self._provider(lambda r: httpx.Response(503)).chat([Message('user', 'Hi')])
        with self.assertRaises(ProviderRequestFailed):
            self._provider(lambda r: httpx.Response(404, json={'error': 'model not found'})).chat(
                [Message('user', 'Hi')]
            )

    def test_is_available_checks_installed_models(self):
        tags = {'models': [{'name': 'llama3.1:8b'}, {'name': 'nomic-embed-text:latest'}]}
        self.assertTrue(self._provider(lambda r: httpx.Response(200, json=tags)).is_available())

        other = {'models': [{'name': 'mistral:7b'}]}
        self.assertFalse(self._provider(lambda r: httpx.Response(200, json=other)).is_available())

    def test_list_models(self):
        tags = {'models': [{'name': 'llama3.1:8b'}]}
        self.assertEqual(self._provider(lambda r: httpx.Response(200, json=tags)).list_models(), ['llama3.1:8b'])

    def test_non_json_body_is_request_failed(self):
        provider = self._provider(lambda r: httpx.Response(200, text='<html>proxy</html>'))
        with self.assertRaises(ProviderRequestFailed):
            provider.chat([Message('user', 'Hi')])
        with self.assertRaises(ProviderRequestFailed):
            provider.embed(['text'])
        self.assertFalse(provider.is_available())

    def test_unexpected_chat_shape_is_request_failed(self):
        for body in ({'model': 'llama3.1:8b'}, {'message': 'Local answer'}, [1, 2]):
            provider = self._provider(lambda r, body=body: httpx.Response(200, json=body))
            with self.assertRaises(ProviderRequestFailed):
                provider.chat([Message('user', 'Hi')])

    def test_malformed_reply_falls_back_to_next_tier(self):
        tags = {'models': [{'name': 'llama3.1:8b'}]}

        def handler(request):
            if request.url.path == '/api/tags':
                return httpx.Response(200, json=tags)
            return httpx.Response(200, text='<html>proxy</html>')

        fallback = FakeProvider('fallback', reply='from fallback')
        router = AIRouter(
            AIConfig(primary_provider='ollama', fallback_provider='fallback'),
            {'ollama': self._provider(handler), 'fallback': fallback},
        )
        response = router.chat(['hello'])
        self.assertEqual(response.content, 'from fallback')
        self.assertEqual(response.provider, 'fallback')


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

class TestGeminiMessageConversion(unittest.TestCase):
    def test_system_messages_become_instruction(self):
        system, contents = _convert_messages([
            Message('system', 'Be brief.'),
            Message('user', 'Hi'),
            Message('assistant', 'Hello'),
        ])
        self.assertEqual(system, 'Be brief.')
        self.assertEqual([c['role'] for c in contents], ['user', 'model'])
        self.assertEqual(contents[0]['parts'], [{'text': 'Hi'}])

    def test_no_system_message(self):
        system, _ = _convert_messages([Message('user', 'Hi')])
        self.assertIsNone(system)


class TestGeminiProvider(unittest.TestCase):
    def setUp(self):
        patcher = patch('google.genai.Client')
        self.client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.client_cls.return_value

    def test_chat_maps_response(self):
        self.client.models.generate_content.return_value = SimpleNamespace(
            text='Gemini says hi',
            usage_metadata=SimpleNamespace(prompt_token_count=10, candidates_token_count=4),
            model_version='gemini-1.5-flash-002',
        )
        provider = GeminiProvider(api_key='g-test')
        response = provider.chat(
            [Message('system', 'Be brief.'), Message('user', 'Hi')],
            ChatOptions(temperature=0.1, max_tokens=30),
        )

        self.assertEqual(response.content, 'Gemini says hi')
        self.assertEqual(response.usage.total_tokens, 14)
        self.assertEqual(response.model, 'gemini-1.5-flash-002')
        kwargs = self.client.models.generate_content.call_args.kwargs
        self.assertEqual(kwargs['model'], 'gemini-1.5-flash')
        self.assertEqual(kwargs['config'].system_instruction, 'Be brief.')
        self.assertEqual(kwargs['config'].max_output_tokens, 30)

    def test_embed(self):
        self.client.models.embed_content.return_value = SimpleNamespace(
            embeddings=[SimpleNamespace(values=[0.1, 0.2]), SimpleNamespace(values=[0.3, 0.4])],
        )
        response = GeminiProvider(api_key='g-test').embed(['a', 'b'])
        self.assertEqual(response.embeddings, [[0.1, 0.2], [0.3, 0.4]])
        self.assertEqual(response.model, 'text-embedding-004')

    def test_missing_key_is_unavailable(self):
        provider = GeminiProvider(api_key='')
        with self.assertRaises(ProviderUnavailable):
            provider.chat([Message('user', 'Hi')])
        self.assertFalse(provider.is_available())

    def test_transport_timeout_translated(self):
        self.client.models.generate_content.side_effect = httpx.ReadTimeout('slow')
        with self.assertRaises(ProviderTimeout):
            GeminiProvider(api_key='g-test').chat([Message('user', 'Hi')])

    def test_is_available_false_on_connect_error(self):
        self.client.models.get.side_effect = httpx.ConnectError('refused')
        self.assertFalse(GeminiProvider(api_key='g-test').is_available())

    def test_is_available_true(self):
        self.client.models.get.return_value = MagicMock()
        self.assertTrue(GeminiProvider(api_key='g-test').is_available())
