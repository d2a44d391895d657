import httpx
import pytest

from foresight_interviewer.voice.stt import RemoteTranscriber


@pytest.mark.asyncio
async def test_remote_transcriber_posts_audio_and_language() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        body = request.content
        seen["path"] = request.url.path
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = body
        return httpx.Response(200, json={"transcript": "  namaste  "})

    transcriber = RemoteTranscriber("http://speech.local/", transport=httpx.MockTransport(handler))
    try:
        text = await transcriber.transcribe(b"RIFFDATA", "hi-IN")
    finally:
        await transcriber.close()

    assert text == "namaste"
    assert seen["path"] == "/transcribe-speech"
    assert str(seen["content_type"]).startswith("multipart/form-data")
    body = seen["body"]
    assert b'name="audio"; filename="audio.wav"' in body
    assert b"RIFFDATA" in body
    assert b'name="lang"' in body
    assert b"hi-IN" in body


@pytest.mark.asyncio
async def test_remote_transcriber_raises_on_server_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"error": "busy"}))
    transcriber = RemoteTranscriber("http://speech.local", transport=transport)
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await transcriber.transcribe(b"RIFF", "en-US")
    finally:
        await transcriber.close()


@pytest.mark.asyncio
async def test_remote_transcriber_treats_missing_transcript_as_silence() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    transcriber = RemoteTranscriber("http://speech.local", transport=transport)
    try:
        assert await transcriber.transcribe(b"RIFF", "en-US") == ""
    finally:
        await transcriber.close()
