"""CLI entry point for prometheus.

With a PROMPT argument the reply is streamed to stdout and the process
exits (non-interactive mode); without one the chat TUI starts.
"""

import argparse
import json
import logging
import os
import sys

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.table import Table
from rich.text import Text

import prometheus_chat.io.logging_setup
import prometheus_chat.io.settings
from prometheus_chat.app.chat_controller import ChatController
from prometheus_chat.core.render_driver import RenderDriver
from prometheus_chat.core.palette import get_theme
from prometheus_chat.core.search import SearchEngine, SearchQuery
from prometheus_chat.io.conversations import ConversationError, ConversationManager
from prometheus_chat.pipeline.ollama_client import GenerationOptions, OllamaClient, OllamaError
from prometheus_chat.tui import rendering
from prometheus_chat.tui.app import PrometheusApp

logger = logging.getLogger(__name__)


class ExitCode:
    SUCCESS = 0
    INVALID_ARGS = 1
    BACKEND_UNREACHABLE = 2
    MODEL_UNAVAILABLE = 4
    FILE_ERROR = 5
    SIGINT = 130


_ERROR_EXIT_CODES = {
    "unreachable": ExitCode.BACKEND_UNREACHABLE,
    "model_unavailable": ExitCode.MODEL_UNAVAILABLE,
}


def _temperature(value: str) -> float:
    t = float(value)
    if not 0.0 <= t <= 2.0:
        raise argparse.ArgumentTypeError("temperature must be between 0.0 and 2.0")
    return t


def _positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prometheus", description="Chat with a local Ollama model")
    parser.add_argument("prompt", nargs="?", default=None, help="Prompt to send (enables non-interactive mode)")
    parser.add_argument(
        "-u",
        "--url",
        type=str,
        default=None,
        help="Ollama backend URL (default: $PROMETHEUS_OLLAMA_URL, then settings)",
    )
    parser.add_argument("-m", "--model", type=str, default=None, help="Model name to use")
    parser.add_argument("--system", type=str, default=None, help="System prompt")
    parser.add_argument("--temperature", type=_temperature, default=None, help="Temperature (0.0-2.0)")
    parser.add_argument("--max-tokens", type=_positive_int, default=None, help="Maximum tokens in the reply")
    parser.add_argument("-q", "--quiet", action="store_true", help="Print only the raw reply text")
    parser.add_argument("--json", action="store_true", help="Print the reply as a JSON object")
    parser.add_argument("--no-stream", action="store_true", help="Wait for the full reply before printing")
    parser.add_argument("--no-save", action="store_true", help="Do not save the exchange as a conversation")
    parser.add_argument("-c", "--conversation", type=str, default=None, help="Continue a saved conversation by id")
    parser.add_argument("--list-models", action="store_true", help="List available models and exit")
    parser.add_argument("--list-conversations", action="store_true", help="List saved conversations and exit")
    parser.add_argument("--search", type=str, default=None, help="Search saved conversations and exit")
    parser.add_argument("--case-sensitive", action="store_true", help="Case-sensitive --search")
    parser.add_argument("--whole-word", action="store_true", help="Whole-word --search")
    return parser


def _fail(console: Console, code: int, message: str) -> int:
    err = Console(stderr=True, force_terminal=console.is_terminal)
    err.print(Text.assemble(("Error: ", "bold red"), message))
    return code


def _list_conversations(console: Console, manager: ConversationManager) -> int:
    entries = manager.list_conversations()
    if not entries:
        console.print("No saved conversations.")
        return ExitCode.SUCCESS
    table = Table("id", "name", "messages", "updated", "preview")
    for meta in entries:
        table.add_row(meta.id, meta.name, str(meta.message_count), meta.updated_at, meta.preview)
    console.print(table)
    return ExitCode.SUCCESS


def _search(console: Console, manager: ConversationManager, args, theme) -> int:
    engine = SearchEngine()
    conversations = {c.id: c for c in manager.load_all()}
    for conv in conversations.values():
        engine.index_conversation(conv)
    query = SearchQuery(args.search, case_sensitive=args.case_sensitive, whole_word=args.whole_word)
    results = engine.search(query)
    if not results:
        console.print("No matches.")
        return ExitCode.SUCCESS
    for result in results:
        conv = conversations[result.conversation_id]
        content = conv.messages[result.message_index].content
        console.print(f"[bold]{escape(conv.name)}[/] [dim]{conv.id} #{result.message_index} ({result.role})[/]")
        console.print(rendering.render_segments(engine.highlight(result, content), theme))
        console.print()
    return ExitCode.SUCCESS


def _echo_tokens(controller: ChatController, prompt: str) -> None:
    """Send prompt, writing the reply's raw text to stdout chunk by chunk."""
    driver = controller.driver
    written: dict[str, int] = {}

    def echo(message_id, segments, streaming):
        if not streaming:
            return
        raw = driver.raw_content(message_id)
        sys.stdout.write(raw[written.get(message_id, 0):])
        sys.stdout.flush()
        written[message_id] = len(raw)

    dispose = driver.subscribe(echo)
    try:
        controller.send(prompt)
    finally:
        dispose()
        if any(written.values()):
            sys.stdout.write("\n")
            sys.stdout.flush()


def _run_prompt(console: Console, controller: ChatController, args, theme) -> int:
    """Non-interactive mode: one prompt, one reply.

    --quiet, --json and --no-stream print once the reply is complete. Otherwise
    a terminal gets a live render and a pipe gets raw text as it arrives.
    """
    driver = controller.driver
    buffered = args.quiet or args.json or args.no_stream
    raw_mode = args.quiet or args.json or not console.is_terminal
    try:
        if not buffered and not console.is_terminal:
            _echo_tokens(controller, args.prompt)
            return ExitCode.SUCCESS
        if buffered:
            reply = controller.send(args.prompt)
        else:
            with Live(console=console, auto_refresh=False) as live:
                def paint(message_id, segments, streaming):
                    live.update(rendering.render_segments(segments, theme, streaming=streaming), refresh=True)

                dispose = driver.subscribe(paint)
                try:
                    reply = controller.send(args.prompt)
                finally:
                    dispose()
            return ExitCode.SUCCESS
    except OllamaError as e:
        logger.error("backend error: %s", e)
        return _fail(console, _ERROR_EXIT_CODES.get(e.kind, ExitCode.BACKEND_UNREACHABLE), str(e))
    except KeyboardInterrupt:
        controller.cancel()
        return ExitCode.SIGINT

    if args.json:
        print(json.dumps({
            "model": controller.model,
            "conversation_id": controller.conversation.id,
            "response": reply.content,
        }))
    elif raw_mode:
        print(reply.content)
    else:
        console.print(rendering.render_segments(driver.render(reply.id), theme))
    return ExitCode.SUCCESS


def main(argv=None) -> int:
    try:
        args = build_parser().parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on bad arguments; 2 means BACKEND_UNREACHABLE here.
        return ExitCode.INVALID_ARGS if e.code else ExitCode.SUCCESS
    console = Console()

    interactive = args.prompt is None and not (
        args.list_models or args.list_conversations or args.search is not None
    )
    # [LAW:single-enforcer] Runtime logger configuration is centralized in io.logging_setup.
    log_runtime = prometheus_chat.io.logging_setup.configure(
        session_name="tui" if interactive else "cli",
        stderr=not interactive,
    )
    logger.debug("logging configured level=%s file=%s", log_runtime.level_name, log_runtime.file_path)

    config = prometheus_chat.io.settings.load_config()
    theme = get_theme(config.theme)
    manager = ConversationManager()

    if args.list_conversations:
        return _list_conversations(console, manager)
    if args.search is not None:
        if not args.search.strip():
            return _fail(console, ExitCode.INVALID_ARGS, "search text is empty")
        return _search(console, manager, args, theme)

    url = args.url or os.environ.get("PROMETHEUS_OLLAMA_URL") or config.ollama_url
    url_error = prometheus_chat.io.settings.validate_backend_url(url)
    if url_error:
        return _fail(console, ExitCode.INVALID_ARGS, url_error)
    client = OllamaClient(url, timeout=config.timeout_seconds)

    if args.list_models:
        try:
            models = client.fetch_models()
        except OllamaError as e:
            return _fail(console, _ERROR_EXIT_CODES.get(e.kind, ExitCode.BACKEND_UNREACHABLE), str(e))
        for name in models:
            print(name)
        return ExitCode.SUCCESS

    if args.prompt is not None and not args.prompt.strip():
        return _fail(console, ExitCode.INVALID_ARGS, "prompt is empty")

    conversation = None
    if args.conversation:
        try:
            conversation = manager.load_conversation(args.conversation)
        except ConversationError as e:
            return _fail(console, ExitCode.FILE_ERROR, str(e))

    model = args.model or (conversation.model if conversation else None) or config.model
    if not model:
        return _fail(console, ExitCode.INVALID_ARGS, "no model given; use --model or set \"model\" in settings")

    controller = ChatController(
        client,
        RenderDriver(),
        None if args.no_save else manager,
        conversation,
        model=model,
        options=GenerationOptions(args.temperature, args.max_tokens, args.system),
        max_history=config.max_chat_history,
    )

    if url != config.ollama_url:
        prometheus_chat.io.settings.add_saved_url(config, url)
        prometheus_chat.io.settings.save_config(config)

    if args.prompt is not None:
        return _run_prompt(console, controller, args, theme)

    PrometheusApp(controller, theme_name=config.theme).run()
    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
