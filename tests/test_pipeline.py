"""Tests for the commit pipeline: context, generation and the repair retry."""

import asyncio

import pytest

from diffscribe.changes import ChangeStatus, FileChange, StagedChanges
from diffscribe.config import Config
from diffscribe.llm.base import GenerationCancelled, TransportError
from diffscribe.llm.stream_decoder import CancelToken
from diffscribe.pipeline import CommitPipeline, PipelineError
from diffscribe.sanitizer import CommitFormat


DIFF = """\
--- a/src/auth/login.py
+++ b/src/auth/login.py
@@ -1,2 +1,3 @@
 import os
+import jwt

"""


class FakeClient:
    """Returns queued responses and records every prompt it was given."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate(self, prompt, cancel=None, on_token=None):
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if on_token is not None:
            on_token(response)
        return response


class FakeMapper:

    def __init__(self):
        self.calls = []

    def extract_symbols_parallel(self, changes, provider, max_workers=4):
        self.calls.append((len(changes), max_workers))
        return []


def make_changes():
    return StagedChanges.from_files([
        FileChange("src/auth/login.py", ChangeStatus.MODIFIED, diff=DIFF,
                   additions=1, deletions=0),
    ])


def make_pipeline(client, config=None):
    return CommitPipeline(config or Config(), client, provider=None, mapper=FakeMapper())


def run(coro):
    return asyncio.run(coro)


class TestGenerate:

    def test_valid_first_answer(self):
        client = FakeClient('{"type":"feat","scope":"auth","subject":"Sign tokens"}')
        pipeline = make_pipeline(client)

        message = run(pipeline.generate(make_changes()))

        assert message == "feat(auth): sign tokens"
        assert len(client.prompts) == 1
        assert "src/auth/login.py" in client.prompts[0]
        assert pipeline.last_context is not None

    def test_invalid_answer_is_repaired_once(self):
        client = FakeClient("Sure, I updated the login.", "fix(auth): import jwt")
        pipeline = make_pipeline(client)

        message = run(pipeline.generate(make_changes()))

        assert message == "fix(auth): import jwt"
        assert len(client.prompts) == 2
        assert client.prompts[1].startswith(client.prompts[0])
        assert "previous reply could not be used" in client.prompts[1]

    def test_second_failure_raises(self):
        client = FakeClient("nothing useful", "still nothing")
        pipeline = make_pipeline(client)

        with pytest.raises(PipelineError, match="valid commit message"):
            run(pipeline.generate(make_changes()))

        assert len(client.prompts) == 2

    def test_transport_error_propagates(self):
        client = FakeClient(TransportError("Ollama HTTP 500: boom"))

        with pytest.raises(TransportError):
            run(make_pipeline(client).generate(make_changes()))

    def test_empty_changes(self):
        with pytest.raises(PipelineError, match="No staged changes"):
            run(make_pipeline(FakeClient()).generate(StagedChanges()))

    def test_cancelled_before_generation(self):
        client = FakeClient("feat: x")
        cancel = CancelToken()
        cancel.cancel()

        with pytest.raises(GenerationCancelled):
            run(make_pipeline(client).generate(make_changes(), cancel))

        assert client.prompts == []

    def test_tokens_reach_callback(self):
        client = FakeClient("chore: bump deps")
        tokens = []

        run(make_pipeline(client).generate(make_changes(), on_token=tokens.append))

        assert tokens == ["chore: bump deps"]

    def test_prebuilt_context_is_reused(self):
        client = FakeClient("fix: x")
        pipeline = make_pipeline(client)

        async def flow():
            context = await pipeline.build_context(make_changes())
            await pipeline.generate(make_changes(), context=context)

        run(flow())

        assert len(pipeline.mapper.calls) == 1

    def test_format_from_config(self):
        config = Config()
        config.FORMAT = CommitFormat(include_scope=False)
        client = FakeClient('{"type":"feat","scope":"auth","subject":"sign tokens"}')

        assert run(make_pipeline(client, config).generate(make_changes())) == \
            "feat: sign tokens"

    def test_parser_workers_from_config(self):
        config = Config()
        config.PARSER_WORKERS = 2
        pipeline = make_pipeline(FakeClient(), config)

        run(pipeline.extract_symbols(make_changes()))

        assert pipeline.mapper.calls == [(1, 2)]
