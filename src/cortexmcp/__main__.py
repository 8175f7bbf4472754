"""Process entrypoint: build configuration from the environment and serve.

Environment variables (a ``.env`` file in the working directory is
loaded first; variables already set stay authoritative):

- ``CORTEX_REDIS_URL``
- ``CORTEX_LLM_PROVIDER``, ``CORTEX_LLM_MODEL``, ``CORTEX_LLM_API_KEY``,
  ``CORTEX_LLM_BASE_URL``
- ``CORTEX_KNOWLEDGE_PATH``, ``CORTEX_USAGE_PATH``
- ``CORTEX_DEFAULT_DAILY_BUDGET``, ``CORTEX_STALENESS_HOURS``
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os

from dotenv import load_dotenv

from cortexmcp.config import BudgetConfig
from cortexmcp.config import ContextConfig
from cortexmcp.config import KnowledgeConfig
from cortexmcp.config import LLMConfig
from cortexmcp.config import UsageConfig
from cortexmcp.server import configure
from cortexmcp.server import mcp
from cortexmcp.server import shutdown

logger = logging.getLogger(__name__)


def _llm_config_from_env() -> LLMConfig:
    defaults = LLMConfig()
    return LLMConfig(
        provider=os.getenv("CORTEX_LLM_PROVIDER", defaults.provider),
        model=os.getenv("CORTEX_LLM_MODEL", defaults.model),
        api_key=os.getenv("CORTEX_LLM_API_KEY") or None,
        base_url=os.getenv("CORTEX_LLM_BASE_URL", defaults.base_url),
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cortexmcp",
        description="Shared contact memory MCP server for AI agents.",
    )
    parser.add_argument(
        "--redis-url",
        default=os.getenv("CORTEX_REDIS_URL", "redis://localhost:6379"),
    )
    parser.add_argument(
        "--transport",
        choices=("stdio", "http", "sse"),
        default="stdio",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not run the background jobs in this process.",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


async def _serve(args: argparse.Namespace) -> None:
    await configure(
        args.redis_url,
        llm_config=_llm_config_from_env(),
        context_config=ContextConfig(
            staleness_hours=float(os.getenv("CORTEX_STALENESS_HOURS", "24")),
        ),
        knowledge_config=KnowledgeConfig(
            file_path=os.getenv("CORTEX_KNOWLEDGE_PATH", KnowledgeConfig.file_path),
        ),
        budget_config=BudgetConfig(
            default_daily_token_budget=int(
                os.getenv("CORTEX_DEFAULT_DAILY_BUDGET", "100000")
            ),
        ),
        usage_config=UsageConfig(
            file_path=os.getenv("CORTEX_USAGE_PATH", UsageConfig.file_path),
        ),
        start_scheduler=not args.no_scheduler,
    )
    try:
        await mcp.run_async(transport=args.transport)
    finally:
        await shutdown()


def main(argv: list[str] | None = None) -> None:
    load_dotenv(override=False)
    args = _parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("starting cortexmcp transport=%s", args.transport)
    asyncio.run(_serve(args))


if __name__ == "__main__":
    main()
