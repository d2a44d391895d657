"""
Main entry point for the Foresight interviewer.
"""

import argparse
import asyncio
import logging
import sys

from foresight_interviewer.agents.question_generator import (
    LLMQuestionGenerator,
    PlanSequenceGenerator,
    QuestionGenerationService,
)
from foresight_interviewer.config import Settings, get_settings
from foresight_interviewer.interview.schemas import LANGUAGE_OPTIONS, ResearchPlan
from foresight_interviewer.interview.session import InterviewServices, SessionConfig
from foresight_interviewer.io.text_interface import TextInterface
from foresight_interviewer.models.provider import LLMClientProvider, ollama_client_factory


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="foresight-interview", description="Run a research interview")
    parser.add_argument("--plan", help="Research plan JSON file (uses a one-question default plan if omitted)")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="text",
        help="Run in text or voice mode",
    )
    parser.add_argument(
        "--language",
        choices=sorted(LANGUAGE_OPTIONS),
        default=settings.language,
        help="Interview language (default: FORESIGHT_LANGUAGE or en-US)",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Ask planned questions in order without an LLM",
    )
    parser.add_argument(
        "--artifacts-dir",
        default=settings.artifacts_dir,
        help="Where to write the interview result (default: FORESIGHT_ARTIFACTS_DIR)",
    )
    return parser


def load_plan(path: str | None) -> ResearchPlan:
    if not path:
        return ResearchPlan()
    return ResearchPlan.from_file(path)


def build_generator(settings: Settings, offline: bool) -> QuestionGenerationService:
    if offline:
        return PlanSequenceGenerator()
    return LLMQuestionGenerator(LLMClientProvider(ollama_client_factory(settings)))


async def run_interview(argv: list[str] | None = None) -> None:
    """
    Run an interactive interview session.

    This is the main async entry point that initializes all components
    and runs the interview loop.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)

    args = build_parser().parse_args(argv)
    plan = load_plan(args.plan)
    logger.info(f"Loaded plan with {plan.total_questions} planned question(s)")
    if not args.offline:
        logger.debug(f"Using LLM model: {settings.llm_model_name}")

    services = InterviewServices(question_generator=build_generator(settings, args.offline))
    config = SessionConfig.from_settings(settings)

    if args.mode == "voice":
        # Lazy import so text mode works without the voice extras.
        from foresight_interviewer.io.voice_interface import VoiceInterface, build_voice_services

        interface = VoiceInterface(
            plan,
            build_voice_services(settings.model_copy(update={"language": args.language}), services),
            language=args.language,
            config=config,
            artifacts_dir=args.artifacts_dir,
        )
    else:
        interface = TextInterface(
            plan,
            services,
            language=args.language,
            config=config,
            artifacts_dir=args.artifacts_dir,
        )

    logger.info("Starting interview session...")
    await interface.run()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_interview(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nInterview session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
