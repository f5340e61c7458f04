#!/usr/bin/env python3
"""
Command-line entry point for RoboDoc.

Usage:
    robodoc diagnose SEGMENT IMAGE   Screen one image for a body segment
    robodoc chat TEXT                Ask the assistant one question
    robodoc serve                    Run the web application

    Options:
        --config-dir DIR    Directory with the YAML config files
        --log-level LEVEL   Logging level (default from system_config.yaml)

Author: RoboDoc Team
"""

import argparse
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_settings
from .errors import NetworkError, UploadRejected
from .imaging.upload_validator import Upload, UploadValidator
from .inference.pipeline import DiagnosisPipeline
from .llm.chat_client import ChatClient

logger = logging.getLogger(__name__)


def _diagnose(args: argparse.Namespace) -> int:
    settings = args.settings
    path = Path(args.image)

    if not path.exists():
        print(f"Error: Image file not found: {path}", file=sys.stderr)
        return 1

    mime_type, _ = mimetypes.guess_type(path.name)
    upload = Upload(data=path.read_bytes(), mime_type=mime_type or '', filename=path.name)

    try:
        UploadValidator(settings.inference).validate(upload)
    except UploadRejected as e:
        print(e.display_message(), file=sys.stderr)
        return 1

    pipeline = DiagnosisPipeline(settings.segments, settings.inference)
    try:
        outcome = pipeline.run(upload.data, args.segment)
    finally:
        pipeline.close()

    if not outcome.ok:
        print(outcome.message, file=sys.stderr)
        return 1

    if args.json:
        print(outcome.result.to_json())
    else:
        print(outcome.message)
    return 0


def _chat(args: argparse.Namespace) -> int:
    client = ChatClient(args.settings.chat)
    text = ' '.join(args.text)

    try:
        print(client.reply(text))
    except NetworkError as e:
        print(client.prompt_builder.failure_message(e, text), file=sys.stderr)
        return 1
    return 0


def _serve(args: argparse.Namespace) -> int:
    from .dashboard.app import run_dashboard

    run_dashboard(host=args.host, port=args.port, settings=args.settings)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='robodoc',
        description='Body segment health screening and chat assistant'
    )
    parser.add_argument('--config-dir', type=Path, default=None,
                        help='Directory with the YAML config files')
    parser.add_argument('--log-level', default=None,
                        help='Logging level (DEBUG, INFO, WARNING, ERROR)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    diagnose = subparsers.add_parser('diagnose', help='Screen one image')
    diagnose.add_argument('segment', help='eye, ear, skin, scalp or teeth')
    diagnose.add_argument('image', help='JPEG or PNG image file')
    diagnose.add_argument('--json', action='store_true', help='Print the full result as JSON')
    diagnose.set_defaults(handler=_diagnose)

    chat = subparsers.add_parser('chat', help='Ask the assistant one question')
    chat.add_argument('text', nargs='+', help='Message to send')
    chat.set_defaults(handler=_chat)

    serve = subparsers.add_parser('serve', help='Run the web application')
    serve.add_argument('--host', default=None, help='Host to bind to')
    serve.add_argument('--port', type=int, default=None, help='Port to listen on')
    serve.set_defaults(handler=_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=_log_level(args.log_level or 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Config warnings are logged with the handler above in place
    args.settings = load_settings(args.config_dir)
    if not args.log_level:
        logging.getLogger().setLevel(_log_level(args.settings.dashboard.log_level))

    return args.handler(args)


def _log_level(name: str) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


if __name__ == '__main__':
    sys.exit(main())
