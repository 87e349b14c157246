import argparse
import logging
import shlex
import signal
import sys
import time
from typing import List, Optional, Sequence, TextIO

from playbridge.application.arguments import ACTION_CATALOG, ChoiceArg, NumberArg
from playbridge.application.session import PlaybackSession
from playbridge.crosscutting.config import Settings, setup_config
from playbridge.crosscutting.logging import setup_logging
from playbridge.domain.entities import ActionRequest
from playbridge.domain.errors import AuthError, ConfigurationError
from playbridge.infrastructure.auth import TokenManager
from playbridge.infrastructure.providers.spotify import SpotifyService

QUIT_WORDS = {'quit', 'exit'}


def parse_action_line(line: str) -> Optional[ActionRequest]:
    """Parse ``verb key=value key="two words"`` into an ActionRequest.

    Returns None for blank lines and comments.
    """
    parts = shlex.split(line, comments=True)
    if not parts:
        return None

    verb, arguments = parts[0], {}
    for part in parts[1:]:
        if '=' not in part:
            raise ValueError(f"Expected key=value, got {part!r}")
        key, value = part.split('=', 1)
        arguments[key.strip()] = value
    return ActionRequest(verb, arguments)


def describe_catalog() -> List[str]:
    """Human-readable lines describing every action."""
    lines = []
    for verb, spec in ACTION_CATALOG.items():
        args = []
        for arg in spec.arguments:
            if isinstance(arg, ChoiceArg):
                label = f"{arg.name}={'|'.join(arg.choices)}"
            elif isinstance(arg, NumberArg):
                label = f"{arg.name}=N"
            else:
                label = f"{arg.name}=TEXT"
            args.append(label if getattr(arg, 'required', False) else f"[{label}]")
        lines.append(f"{verb} {' '.join(args)}".rstrip() + f"  - {spec.description}")
    return lines


class ConsoleHost:
    """Session host that prints notes, flags and context to a stream."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.last_flags: Sequence[str] = ()
        self.last_context: Optional[str] = None

    def send_note(self, text: str) -> None:
        print(f"[note] {text}", file=self.stream, flush=True)

    def trigger_reply(self) -> None:
        print("[reply requested]", file=self.stream, flush=True)

    def set_flags(self, flags: Sequence[str]) -> None:
        self.last_flags = tuple(flags)
        print(f"[flags] {', '.join(flags)}", file=self.stream, flush=True)

    def set_context(self, text: Optional[str]) -> None:
        self.last_context = text
        if text:
            print(f"[now playing] {text}", file=self.stream, flush=True)


class CLI:
    """Command Line Interface for PlayBridge."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.parser = self._create_parser()
        self._start_time = None
        self._session: Optional[PlaybackSession] = None

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='playbridge',
            description='Resolve music commands and keep a chat session in sync with Spotify playback'
        )
        parser.add_argument('--log-level', default='INFO',
                            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            help='Logging level (default: INFO)')
        parser.add_argument('--log-file', help='Also write JSON logs to this file')
        parser.add_argument('--env-file', help='Path of the .env file to load')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        auth_parser = subparsers.add_parser('auth', help='Authorize with Spotify')
        auth_parser.add_argument('--code', help='Authorization code from the redirect')

        serve_parser = subparsers.add_parser('serve', help='Run the OAuth/health HTTP server')
        serve_parser.add_argument('--host', default='127.0.0.1', help='Bind address')
        serve_parser.add_argument('--port', type=int, default=5384, help='Bind port')

        subparsers.add_parser('run', help='Start a session and read actions from stdin')

        action_parser = subparsers.add_parser('action', help='Run a single action')
        action_parser.add_argument('verb', help='Action verb, see "actions"')
        action_parser.add_argument('arguments', nargs='*', metavar='KEY=VALUE', help='Action arguments')

        subparsers.add_parser('actions', help='List available actions')

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            self._cleanup_resources()
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        logger = logging.getLogger(__name__)
        if self._session is not None:
            self._session.close()
            self._session = None
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")
            self._start_time = None

    def _create_service(self, settings: Settings) -> SpotifyService:
        return SpotifyService(TokenManager(settings))

    def _print(self, text: str) -> None:
        print(text, file=self.stdout, flush=True)

    def _auth(self, args: argparse.Namespace, settings: Settings) -> None:
        tokens = TokenManager(settings)
        if not args.code:
            self._print("Open this URL, approve access, then rerun with --code <code>:")
            self._print(tokens.get_authorize_url())
            return
        tokens.exchange_code(args.code)
        self._print(f"Spotify token saved to {tokens.token_path}")

    def _serve(self, args: argparse.Namespace, settings: Settings) -> None:
        from playbridge.interfaces.http import HTTPServer

        self._setup_signal_handlers()
        HTTPServer(settings, host=args.host, port=args.port).run()

    def _run_session(self, settings: Settings) -> None:
        logger = logging.getLogger(__name__)
        self._setup_signal_handlers()

        host = ConsoleHost(self.stdout)
        self._session = PlaybackSession(self._create_service(settings), host, settings)
        self._session.start()
        self._print("Session started. Type actions as 'verb key=value', 'quit' to stop.")

        for line in self.stdin:
            if line.strip().lower() in QUIT_WORDS:
                break
            try:
                request = parse_action_line(line)
            except ValueError as e:
                self._print(f"Invalid input: {e}")
                continue
            if request is None:
                continue
            logger.debug(f"Dispatching {request.verb}")
            self._session.dispatcher.handle(request)

    def _single_action(self, args: argparse.Namespace, settings: Settings) -> None:
        request = parse_action_line(' '.join(shlex.quote(a) for a in [args.verb, *args.arguments]))
        host = ConsoleHost(self.stdout)
        session = PlaybackSession(self._create_service(settings), host, settings)
        # One poll so handlers see the current device and track
        session.coordinator.initialize()
        session.monitor.poll_once()
        session.dispatcher.handle(request)

    def run(self, argv: Optional[Sequence[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()

        try:
            args = self.parser.parse_args(argv)

            if not args.command:
                self.parser.print_help()
                sys.exit(1)

            setup_logging(args.log_level, args.log_file)

            if args.command == 'actions':
                for line in describe_catalog():
                    self._print(line)
                return

            settings = setup_config(env_file=args.env_file)

            if args.command == 'auth':
                self._auth(args, settings)
            elif args.command == 'serve':
                self._serve(args, settings)
            elif args.command == 'run':
                self._run_session(settings)
            elif args.command == 'action':
                self._single_action(args, settings)
            else:
                self.parser.print_help()
                sys.exit(1)

        except KeyboardInterrupt:
            logger = logging.getLogger(__name__)
            logger.warning("Operation cancelled by user")
            self._cleanup_resources()
            sys.exit(130)
        except (ConfigurationError, AuthError, ValueError) as e:
            logger = logging.getLogger(__name__)
            logger.error(f"CLI error: {e}")
            self._print(f"Error: {e}")
            self._cleanup_resources()
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
