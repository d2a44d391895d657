import io

import pytest

from foresight_interviewer.interview.schemas import DEFAULT_QUESTION


def test_voice_runner_env_defaults_are_used(monkeypatch):
    # Lightweight: verifies the CLI defaults are wired to environment variables.
    monkeypatch.setenv("FORESIGHT_PIPER_BIN", "/tmp/piper")
    monkeypatch.setenv("FORESIGHT_PIPER_MODEL", "/tmp/voice.onnx")
    monkeypatch.setenv("FORESIGHT_STT_MODEL", "small")
    monkeypatch.setenv("FORESIGHT_STT_DEVICE", "cpu")
    monkeypatch.setenv("FORESIGHT_LANGUAGE", "hi-IN")

    from scripts.voice_interview import build_parser

    args = build_parser().parse_args(["--stdin-plan"])
    assert args.stdin_plan is True
    assert args.piper_bin == "/tmp/piper"
    assert args.piper_model == "/tmp/voice.onnx"
    assert args.stt_model == "small"
    assert args.stt_device == "cpu"
    assert args.language == "hi-IN"


def test_voice_runner_stdin_plan_tty_guard(monkeypatch):
    from scripts import voice_interview

    class _Args:
        plan_file = None
        stdin_plan = True

    class _FakeStdin:
        def isatty(self):
            return True

        def read(self):
            raise AssertionError("stdin.read() should not be called when stdin is a TTY")

    monkeypatch.setattr(voice_interview.sys, "stdin", _FakeStdin())

    with pytest.raises(RuntimeError, match="stdin is a TTY"):
        voice_interview._load_plan(_Args())


def test_voice_runner_reads_piped_plan(monkeypatch):
    from scripts import voice_interview

    class _Args:
        plan_file = None
        stdin_plan = True

    piped = io.StringIO('{"keyQuestionnaire": [{"theme": "Pricing", "questions": ["Is it fair?"]}]}')
    piped.isatty = lambda: False  # type: ignore[method-assign]
    monkeypatch.setattr(voice_interview.sys, "stdin", piped)

    plan = voice_interview._load_plan(_Args())
    assert plan.key_questionnaire[0].theme == "Pricing"
    assert plan.key_questionnaire[0].questions == ["Is it fair?"]


def test_voice_runner_defaults_to_single_question_plan():
    from scripts import voice_interview

    class _Args:
        plan_file = None
        stdin_plan = False

    plan = voice_interview._load_plan(_Args())
    assert plan.key_questionnaire[0].questions == [DEFAULT_QUESTION]
