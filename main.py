import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from inbox_extractor.config.settings import get_settings
from inbox_extractor.email_processing.models import EmailDocument
from inbox_extractor.email_processing.recorder import SnapshotEncoder
from inbox_extractor.exceptions import ConfigurationError
from inbox_extractor.runner import build_pipeline
from inbox_extractor.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract structured data from an email and the pages it links to."
    )
    parser.add_argument("--config", required=True, help="Path to agent configuration JSON")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--email-id", help="Outlook message id to fetch and analyze")
    source.add_argument("--html-file", help="Analyze a local HTML email body instead of a mailbox message")
    parser.add_argument("--subject", default="", help="Subject to use with --html-file")
    parser.add_argument(
        "--access-token",
        default=os.getenv("OUTLOOK_ACCESS_TOKEN"),
        help="Microsoft Graph access token (defaults to OUTLOOK_ACCESS_TOKEN)"
    )
    parser.add_argument("--output", help="Write the JSON result to this file instead of stdout")
    return parser.parse_args(argv)


def load_agent_config(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read agent configuration {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Agent configuration {path} must be a JSON object")
    return data


async def run(args: argparse.Namespace) -> Dict[str, Any]:
    agent_config = load_agent_config(args.config)
    pipeline = build_pipeline()

    if args.html_file:
        html = Path(args.html_file).read_text(encoding="utf-8")
        email = EmailDocument(
            id=Path(args.html_file).stem,
            subject=args.subject,
            sender="",
            html_body=html
        )
        result = await pipeline.run(email, agent_config)
    else:
        if not args.access_token:
            raise ConfigurationError("An access token is required to fetch mailbox messages")
        result = await pipeline.process_email(args.email_id, args.access_token, agent_config)

    return result.to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    try:
        result = asyncio.run(run(args))
    except (ConfigurationError, ValueError, OSError) as e:
        logger.error(f"Extraction could not start: {e}")
        return 2

    output = json.dumps(result, cls=SnapshotEncoder, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        logger.info(f"Result written to {args.output}")
    else:
        print(output)

    return 0 if result.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
