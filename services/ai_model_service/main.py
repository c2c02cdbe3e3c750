import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from shared.config import settings
from services.ai_model_service.ensemble_config import ensemble_config_manager
from services.ai_model_service.errors import EnsembleError
from services.ai_model_service.message_intent import analyze_query
from services.ai_model_service.orchestrator import get_orchestrator
from services.ai_model_service.schemas import EnsembleOptions

logger = logging.getLogger("AIModelService")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradeable-ensemble",
        description=f"{settings.PLATFORM_NAME} multi-model AI analysis",
    )
    parser.add_argument("query", type=str, help="Question to analyse")
    parser.add_argument("--context", type=str, default=None, help="Path to a market-context JSON file")
    parser.add_argument("--strategy", type=str, default=None, help="Weighting strategy name")
    parser.add_argument("--auto", action="store_true", help="Pick models and strategy from the query")
    return parser


def load_context(path: Optional[str]) -> dict:
    if not path:
        return {}
    with open(path) as f:
        return json.load(f)


def build_options(query: str, strategy: Optional[str], auto: bool) -> EnsembleOptions:
    if auto:
        plan = ensemble_config_manager.get_optimal_configuration(analyze_query(query))
        logger.info(f"Auto configuration: {plan.enabled_models} / {plan.strategy} (~${plan.expected_cost:.4f})")
        options = EnsembleOptions.from_configuration(plan)
    else:
        options = EnsembleOptions(weighting_strategy=ensemble_config_manager.config.default_strategy)
    if strategy:
        options = options.model_copy(update={"weighting_strategy": strategy})
    return options


async def run(query: str, context: dict, options: EnsembleOptions) -> dict:
    response = await get_orchestrator().generate_ensemble_response(query, context, options)
    return response.model_dump(mode="json")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    try:
        context = load_context(args.context)
    except (OSError, ValueError) as e:
        logger.error(f"Could not read market context: {e}")
        return 2

    options = build_options(args.query, args.strategy, args.auto)
    try:
        result = asyncio.run(run(args.query, context, options))
    except EnsembleError as e:
        logger.error(str(e))
        return 1

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
