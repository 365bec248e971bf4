"""
CLI entry point — argument parsing and main execution flow.
"""

import argparse
import asyncio
import signal
import sys

from .config import Config
from .git_utils import GitChangeProvider, GitError, is_git_repo
from .llm.base import GenerationCancelled, LLMError
from .llm.ollama import OllamaClient
from .llm.stream_decoder import CancelToken
from .log_setup import setup_logger, token_tracker, log
from .pipeline import CommitPipeline, PipelineError

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="diffscribe",
        description="diffscribe — commit messages from your staged changes")
    parser.add_argument("--model", default=None,
                        help="The model name to use (default: from config)")
    parser.add_argument("--config", default=None,
                        help="Path to .diffscribe.yaml config file")
    parser.add_argument("--show-prompt", action="store_true",
                        help="Print the assembled prompt to stderr before generating")
    parser.add_argument("--max-context", type=int, default=None,
                        help="Character budget for the prompt context")
    parser.add_argument("--no-stream", action="store_true",
                        help="Disable streaming responses")
    return parser


def _make_client(cfg: Config, model: str, stream: bool) -> OllamaClient:
    return OllamaClient(
        base_url=cfg.OLLAMA_BASE_URL,
        model=model,
        request_timeout=cfg.REQUEST_TIMEOUT,
        max_retries=cfg.LLM_MAX_RETRIES,
        retry_delay=cfg.LLM_RETRY_DELAY,
        stream=stream,
        max_buffer=cfg.STREAM_BUFFER_LIMIT,
        token_queue_size=cfg.TOKEN_QUEUE_SIZE,
    )


def _print_token(text: str) -> None:
    sys.stderr.write(text)
    sys.stderr.flush()


async def _run(pipeline: CommitPipeline, changes, show_prompt: bool, stream: bool) -> str:
    cancel = CancelToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        # Not available on Windows; KeyboardInterrupt is handled by main()
        pass

    try:
        context = await pipeline.build_context(changes)
        if show_prompt:
            sys.stderr.write(context.to_prompt() + "\n")
        message = await pipeline.generate(
            changes, cancel, _print_token if stream else None, context=context)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    if stream:
        sys.stderr.write("\n")
    return message


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # ── 0. Load config ──
    cfg = Config.load(args.config)
    if args.max_context is not None:
        cfg.MAX_CONTEXT_CHARS = args.max_context
    setup_logger(cfg.LOG_DIR)

    # CLI overrides
    model = args.model or cfg.MODEL
    stream_enabled = cfg.STREAM_RESPONSES and not args.no_stream

    # ── 1. Read staged changes ──
    if not is_git_repo():
        print("\n  [ERROR] Not inside a git repository.\n", file=sys.stderr)
        return EXIT_ERROR
    provider = GitChangeProvider()
    try:
        changes = provider.staged_changes()
    except GitError as e:
        log.error(f"[Git] {e}")
        print(f"\n  [ERROR] {e}\n", file=sys.stderr)
        return EXIT_ERROR
    if changes.is_empty():
        print("\n  Nothing staged. Use `git add` first.\n", file=sys.stderr)
        return EXIT_ERROR

    # ── 2. Init LLM client and pipeline ──
    client = _make_client(cfg, model, stream_enabled)
    if not client.verify_model():
        print(f"\n  [ERROR] Model '{model}' is not available at {client.base_url}. "
              f"Is Ollama running? Try `ollama pull {model}`.\n", file=sys.stderr)
        return EXIT_ERROR
    try:
        pipeline = CommitPipeline(cfg, client, provider)
    except ValueError as e:
        print(f"\n  [ERROR] Invalid configuration: {e}\n", file=sys.stderr)
        return EXIT_ERROR

    # ── 3. Generate ──
    try:
        message = asyncio.run(_run(pipeline, changes, args.show_prompt, stream_enabled))
    except (GenerationCancelled, KeyboardInterrupt):
        log.info("Generation cancelled by user")
        print("\n  Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED
    except (LLMError, PipelineError) as e:
        log.error(f"Generation failed: {e}")
        print(f"\n  [ERROR] {e}\n", file=sys.stderr)
        return EXIT_ERROR

    log.info(f"Tokens: {token_tracker.total_prompt_tokens} prompt, "
             f"{token_tracker.total_completion_tokens} completion")
    print(message)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
