"""
Chat client entry point.
Run with: chatbridge [--provider gemini|openai] [--env-file PATH]
"""
import argparse
import asyncio
import logging

from config import AppConfig, load_config
from chatbridge.agents.base import ProviderKind
from chatbridge.agents.factory import build_registry
from chatbridge.chat.session import ChatSession
from chatbridge.console.chat_console import ChatConsole

logger = logging.getLogger(__name__)


async def main(app_config: AppConfig) -> None:
    """Wire configuration, providers, session and console together.

    Providers whose credentials are missing are disabled by
    :func:`build_registry`; the console still starts so the user sees why.
    """
    logger.info("=== chatbridge starting ===")
    registry = build_registry(app_config)
    session = ChatSession(registry, initial=app_config.default_provider)
    console = ChatConsole(session, export_dir=app_config.export_dir)
    try:
        await console.run()
    finally:
        if session.is_awaiting:
            session.cancel()
        logger.info("=== chatbridge stopped ===")


def run() -> None:
    parser = argparse.ArgumentParser(description="Terminal chat client for OpenAI and Gemini")
    parser.add_argument(
        "--provider",
        choices=[kind.value for kind in ProviderKind],
        default=None,
        help="Provider selected at startup (default: CHATBRIDGE_PROVIDER or gemini)",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        metavar="PATH",
        help="KEY=value file with OPENAI_KEY, OPENAI_PROJECT_ID, GEMINI_KEY, ... (default: .env)",
    )
    parser.add_argument(
        "--log-file",
        default="chatbridge.log",
        metavar="PATH",
        help="Log destination; the terminal is reserved for the conversation (default: chatbridge.log)",
    )
    parser.add_argument(
        "--export-dir",
        default=None,
        metavar="DIR",
        help="Directory for /export (default: CHATBRIDGE_EXPORT_DIR or current directory)",
    )
    args = parser.parse_args()

    # Logging goes to a file so records never interleave with the transcript.
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[logging.FileHandler(args.log_file)],
    )

    app_config = load_config(env_file=args.env_file)
    if args.provider is not None:
        app_config.default_provider = args.provider
    if args.export_dir is not None:
        app_config.export_dir = args.export_dir

    try:
        asyncio.run(main(app_config))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    run()
