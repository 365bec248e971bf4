"""Tests for the Ollama client and the shared LLMClient streaming logic."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests

from diffscribe.llm.base import GenerationCancelled, LLMError, TransportError
from diffscribe.llm.ollama import SYSTEM_PROMPT, OllamaClient
from diffscribe.llm.stream_decoder import CancelToken
from diffscribe.log_setup import token_tracker


STREAM = [
    b'{"response":"fix","done":false}\n{"response":"(api)',
    b': handle timeouts","done":false}\n',
    b'{"response":"","done":true,"prompt_eval_count":42,"eval_count":5}\n',
]


def make_client(**kwargs):
    kwargs.setdefault("retry_delay", 0)
    return OllamaClient("http://localhost:11434/api/generate", "qwen2.5-coder:7b", **kwargs)


def fake_stream(*chunks, error=None):
    async def stream_bytes(prompt, cancel=None):
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error
    return stream_bytes


def json_response(data):
    response = MagicMock()
    response.json.return_value = data
    return response


class TestConstruction:

    def test_full_generate_url(self):
        client = make_client()

        assert client.base_url == "http://localhost:11434/api/generate"
        assert client._api_root == "http://localhost:11434"

    def test_host_only_url(self):
        client = OllamaClient("http://gpu-box:11434/", "llama3")

        assert client.base_url == "http://gpu-box:11434/api/generate"
        assert client._api_root == "http://gpu-box:11434"

    def test_payload_carries_system_prompt(self):
        payload = make_client()._payload("diff here", True)

        assert payload["system"] == SYSTEM_PROMPT
        assert payload["stream"] is True
        assert payload["model"] == "qwen2.5-coder:7b"


class TestStreamingGenerate:

    def test_tokens_forwarded_in_order(self):
        client = make_client()
        client.stream_bytes = fake_stream(*STREAM)
        tokens = []
        calls_before = token_tracker.call_count

        text = asyncio.run(client.generate("prompt", on_token=tokens.append))

        assert text == "fix(api): handle timeouts"
        assert tokens == ["fix", "(api): handle timeouts"]
        assert token_tracker.call_count == calls_before + 1

    def test_stream_failure_before_tokens_falls_back(self):
        client = make_client()
        client.stream_bytes = fake_stream(error=TransportError("Ollama HTTP 500: boom"))

        with patch("diffscribe.llm.ollama.requests.post",
                   return_value=json_response({"response": "fix: retry upload\n"})) as post:
            text = asyncio.run(client.generate("prompt"))

        assert text == "fix: retry upload"
        assert post.call_args.kwargs["json"]["stream"] is False

    def test_stream_failure_after_tokens_propagates(self):
        client = make_client()
        client.stream_bytes = fake_stream(
            b'{"response":"feat","done":false}\n',
            error=ConnectionResetError("reset by peer"),
        )

        with patch("diffscribe.llm.ollama.requests.post") as post:
            with pytest.raises(TransportError):
                asyncio.run(client.generate("prompt"))

        post.assert_not_called()

    def test_cancel_raises_generation_cancelled(self):
        async def run():
            cancel = CancelToken()

            async def stream_bytes(prompt, c=None):
                yield b'{"response":"feat","done":false}\n'
                cancel.cancel()
                await asyncio.sleep(10)
                yield b""

            client = make_client()
            client.stream_bytes = stream_bytes
            return await asyncio.wait_for(client.generate("prompt", cancel), 5)

        with pytest.raises(GenerationCancelled):
            asyncio.run(run())

    def test_already_cancelled(self):
        async def run():
            cancel = CancelToken()
            cancel.cancel()
            return await make_client().generate("prompt", cancel)

        with pytest.raises(GenerationCancelled):
            asyncio.run(run())

    def test_cancelled_is_an_llm_error(self):
        assert issubclass(GenerationCancelled, LLMError)
        assert issubclass(TransportError, LLMError)


class TestNonStreaming:

    def test_no_stream_uses_requests(self):
        client = make_client(stream=False)
        data = {"response": "docs: fix typo", "prompt_eval_count": 9, "eval_count": 4}

        with patch("diffscribe.llm.ollama.requests.post", return_value=json_response(data)):
            text = asyncio.run(client.generate("prompt"))

        assert text == "docs: fix typo"

    def test_retries_then_raises_transport_error(self):
        client = make_client(max_retries=3)

        with patch("diffscribe.llm.ollama.requests.post",
                   side_effect=requests.exceptions.ConnectionError("refused")) as post, \
             patch("diffscribe.llm.base.time.sleep"):
            with pytest.raises(TransportError, match="refused"):
                client.generate_response("prompt")

        assert post.call_count == 3

    def test_empty_response_is_retried(self):
        client = make_client(max_retries=2)
        responses = [json_response({"response": ""}), json_response({"response": "fix: x"})]

        with patch("diffscribe.llm.ollama.requests.post", side_effect=responses), \
             patch("diffscribe.llm.base.time.sleep"):
            assert client.generate_response("prompt") == "fix: x"

    def test_empty_after_all_retries(self):
        client = make_client(max_retries=2)

        with patch("diffscribe.llm.ollama.requests.post",
                   return_value=json_response({"response": "  "})), \
             patch("diffscribe.llm.base.time.sleep"):
            with pytest.raises(LLMError, match="empty response"):
                client.generate_response("prompt")


class TestModels:

    def test_verify_model(self):
        client = make_client()
        tags = {"models": [{"name": "qwen2.5-coder:7b"}, {"name": "llama3:latest"}]}

        with patch("diffscribe.llm.ollama.requests.get", return_value=json_response(tags)) as get:
            assert client.verify_model() is True

        assert get.call_args.args[0] == "http://localhost:11434/api/tags"

    def test_verify_model_latest_tag(self):
        client = OllamaClient("http://localhost:11434", "llama3")
        tags = {"models": [{"name": "llama3:latest"}]}

        with patch("diffscribe.llm.ollama.requests.get", return_value=json_response(tags)):
            assert client.verify_model() is True

    def test_verify_model_unreachable(self):
        with patch("diffscribe.llm.ollama.requests.get",
                   side_effect=requests.exceptions.ConnectionError("down")):
            assert make_client().verify_model() is False
