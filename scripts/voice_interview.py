#!/usr/bin/env python

import argparse
import asyncio
import json
import os
import sys

from foresight_interviewer.config import get_settings
from foresight_interviewer.interview.schemas import LANGUAGE_OPTIONS, ResearchPlan
from foresight_interviewer.interview.session import InterviewServices, SessionConfig
from foresight_interviewer.io.voice_interface import VoiceInterface, build_voice_services
from foresight_interviewer.main import build_generator, setup_logging


def _load_plan(args) -> ResearchPlan:
    if args.plan_file:
        return ResearchPlan.from_file(args.plan_file)

    if args.stdin_plan:
        if sys.stdin.isatty():
            raise RuntimeError(
                "--stdin-plan was set, but stdin is a TTY (nothing is being piped). "
                "Pipe the plan JSON into stdin or use --plan-file instead."
            )

        raw = sys.stdin.read()
        if raw.strip():
            return ResearchPlan.model_validate(json.loads(raw))

    # Fallback: default one-question plan
    return ResearchPlan()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run a Foresight research interview in voice mode")

    g = p.add_mutually_exclusive_group()
    g.add_argument("--plan-file", help="Path to a research plan JSON file")
    g.add_argument("--stdin-plan", action="store_true", help="Read the research plan JSON from stdin")

    p.add_argument(
        "--language",
        default=os.getenv("FORESIGHT_LANGUAGE", "en-US"),
        choices=sorted(LANGUAGE_OPTIONS),
        help="Interview language (default: FORESIGHT_LANGUAGE or en-US)",
    )
    p.add_argument("--offline", action="store_true", help="Ask planned questions in order without an LLM")
    p.add_argument("--artifacts-dir", default=os.getenv("FORESIGHT_ARTIFACTS_DIR", "data/interviews"))
    p.add_argument("--sample-rate", type=int, default=16000)

    p.add_argument(
        "--tts-enabled",
        default=os.getenv("FORESIGHT_TTS_ENABLED", "true"),
        help="Speak questions aloud (default: FORESIGHT_TTS_ENABLED or true)",
    )
    p.add_argument(
        "--live-capture",
        default=os.getenv("FORESIGHT_LIVE_CAPTURE_ENABLED", "true"),
        help="Try live transcription before record-and-upload (default: FORESIGHT_LIVE_CAPTURE_ENABLED or true)",
    )

    # STT
    p.add_argument(
        "--stt-model",
        default=os.getenv("FORESIGHT_STT_MODEL", "small"),
        help="faster-whisper model size (default: FORESIGHT_STT_MODEL or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("FORESIGHT_STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: FORESIGHT_STT_DEVICE or 'cpu')",
    )
    p.add_argument(
        "--speech-backend-url",
        default=os.getenv("FORESIGHT_SPEECH_BACKEND_URL", None),
        help="Upload recordings to this transcription backend instead of local faster-whisper",
    )

    # TTS
    p.add_argument(
        "--piper-bin",
        default=os.getenv("FORESIGHT_PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: FORESIGHT_PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("FORESIGHT_PIPER_MODEL", None),
        help="Path to Piper .onnx model (default: FORESIGHT_PIPER_MODEL)",
    )
    p.add_argument(
        "--piper-timeout",
        type=float,
        default=float(os.getenv("FORESIGHT_PIPER_TIMEOUT_S", "60") or "60"),
        help="Timeout (seconds) per Piper synthesis chunk (default: FORESIGHT_PIPER_TIMEOUT_S or 60)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    def _flag(v: str) -> bool:
        return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}

    settings = get_settings().model_copy(
        update={
            "language": args.language,
            "artifacts_dir": args.artifacts_dir,
            "sample_rate": args.sample_rate,
            "tts_enabled": _flag(args.tts_enabled),
            "live_capture_enabled": _flag(args.live_capture),
            "stt_model": args.stt_model,
            "stt_device": args.stt_device,
            "speech_backend_url": args.speech_backend_url,
            "piper_bin": args.piper_bin,
            "piper_model": args.piper_model,
            "piper_timeout_s": args.piper_timeout,
        }
    )

    plan = _load_plan(args)
    services = build_voice_services(
        settings,
        InterviewServices(question_generator=build_generator(settings, args.offline)),
    )
    interface = VoiceInterface(
        plan,
        services,
        language=args.language,
        config=SessionConfig.from_settings(settings),
        artifacts_dir=args.artifacts_dir,
    )
    await interface.run()


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
