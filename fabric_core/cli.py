"""命令行入口：fabric。

    fabric list-patterns
    fabric list-models
    fabric list-sessions
    echo "some text" | fabric stream summarize --session notes
    fabric pipe summarize some text
    fabric show-session notes
    fabric prune-session notes --limit 10
    fabric clear-session notes
"""

import argparse
import sys
from typing import Callable, Dict, List, Optional, TextIO

import pydantic

from fabric_core.agents.session_driver import SessionDriver
from fabric_core.config.settings import Settings, load_settings
from fabric_core.domain.exceptions import BusinessError, ValidationError
from fabric_core.domain.session import QueryEntry, ReplyEntry
from fabric_core.infrastructure.logging.logger import logger, setup_logger
from fabric_core.infrastructure.storage.yaml_store import SessionManager, StoredChatSession
from fabric_core.prompts import PatternDispatcher
from fabric_core.providers import create_provider


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fabric", description="Send text through named patterns to an LLM.")
    parser.add_argument("-m", "--model", help="The name of the LLM to use (env: FABRIC_MODEL)")
    parser.add_argument("--extra-patterns", help="Semicolon list of paths containing more patterns")
    parser.add_argument("-s", "--session", help="Persist the exchange in the named session")
    parser.add_argument("--max-tokens", type=int, help="Maximum tokens in the reply")
    parser.add_argument("--temperature", type=float, help="Sampling temperature")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("list-patterns", help="List available patterns")
    sub.add_parser("list-models", help="Show all available models")
    sub.add_parser("list-sessions", help="Show stored sessions")

    for name, help_text in (("stream", "See results in realtime"), ("pipe", "Pipe output into another command")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("pattern")
        p.add_argument("text", nargs="*", help="Query text; read from stdin when omitted")

    p = sub.add_parser("show-session", help="Print a stored session")
    p.add_argument("name")
    p = sub.add_parser("clear-session", help="Delete a stored session")
    p.add_argument("name")
    p = sub.add_parser("prune-session", help="Keep only the most recent entries of a session")
    p.add_argument("name")
    p.add_argument("--limit", type=int, required=True)
    return parser


def _dispatcher(settings: Settings) -> PatternDispatcher:
    return PatternDispatcher.from_dirs(settings.patterns_path, settings.extra_pattern_dirs)


def _read_text(args: argparse.Namespace, stdin: TextIO) -> str:
    if args.text:
        return " ".join(args.text)
    text = stdin.read()
    if not text.strip():
        raise ValidationError(code="EMPTY_INPUT", message="no input text given")
    return text


def _list_patterns(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    for name in _dispatcher(settings).list_patterns():
        print(name, file=out)
    return 0


def _list_models(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    for name in create_provider(settings).list_models():
        print(name, file=out)
    return 0


def _list_sessions(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    for name in SessionManager(settings.sessions_path).list_sessions():
        print(name, file=out)
    return 0


def _exchange(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    pattern = _dispatcher(settings).get_pattern(args.pattern)
    text = _read_text(args, stdin)
    client = create_provider(settings).get_client(settings.default_model)
    session = SessionManager(settings.sessions_path).get_session(args.session)
    with session:
        driver = SessionDriver(session, client)
        if args.command == "stream":
            driver.stream_message(pattern, text, out)
        else:
            driver.send_message(pattern, text, out)
    return 0


def _show_session(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    with SessionManager(settings.sessions_path).load_session(args.name) as session:
        for entry in session.messages:
            if isinstance(entry, QueryEntry):
                header = f"## user ({entry.pattern})" if entry.pattern else "## user"
            elif isinstance(entry, ReplyEntry):
                header = "## assistant"
            else:
                continue
            print(header, file=out)
            print(entry.content.rstrip("\n"), file=out)
            print(file=out)
    return 0


def _clear_session(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    # 清除时不新建文件，也不写 .bak 备份
    manager = SessionManager(settings.sessions_path)
    StoredChatSession(args.name, manager.path_for(args.name), None, []).clear()
    print(f"cleared {args.name}", file=out)
    return 0


def _prune_session(args, settings: Settings, stdin: TextIO, out: TextIO) -> int:
    with SessionManager(settings.sessions_path).load_session(args.name) as session:
        discarded = session.prune(args.limit)
    print(f"pruned {len(discarded)} entries from {args.name}", file=out)
    return 0


COMMANDS: Dict[str, Callable[..., int]] = {
    "list-patterns": _list_patterns,
    "list-models": _list_models,
    "list-sessions": _list_sessions,
    "stream": _exchange,
    "pipe": _exchange,
    "show-session": _show_session,
    "clear-session": _clear_session,
    "prune-session": _prune_session,
}


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    stdin = stdin or sys.stdin
    out = stdout or sys.stdout
    try:
        settings = load_settings(
            default_model=args.model,
            extra_patterns=args.extra_patterns,
            max_tokens=args.max_tokens,
            temperature=args.temperature,
        )
    except pydantic.ValidationError as e:
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 2
    setup_logger(settings.log_path, "DEBUG" if args.verbose else settings.log_level, settings.log_redact_content)

    command = args.command or "list-patterns"
    try:
        return COMMANDS[command](args, settings, stdin, out)
    except BusinessError as e:
        logger.error(f"Command failed: {e.message}", extra={"extra": {"command": command, "code": e.code}})
        print(f"error: {e.code}: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
