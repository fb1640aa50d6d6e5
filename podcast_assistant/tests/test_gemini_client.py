import httpx
import pytest

from podcast_assistant.domain.exceptions import EmptyBody, NetworkError, RateLimitError, RequestFailed, StreamTimeout
from podcast_assistant.domain.models import GenerationConfig
from podcast_assistant.providers import create_provider
from podcast_assistant.providers.gemini_client import GeminiClient
from podcast_assistant.providers.registry import get_model_config, get_provider_config


class SettingsStub:
    http_timeout = 1.0
    gemini_base_url = "https://generativelanguage.googleapis.com/v1beta"
    default_model = "podcast-chat"


class FakeResponse:
    def __init__(self, status_code=200, chunks=(), body=""):
        self.status_code = status_code
        self._chunks = list(chunks)
        self._body = body
        self.read_called = False

    def iter_text(self):
        for chunk in self._chunks:
            yield chunk

    def read(self):
        self.read_called = True
        return self._body.encode("utf-8")

    @property
    def text(self):
        return self._body


class StreamContext:
    def __init__(self, response):
        self._response = response

    def __enter__(self):
        return self._response

    def __exit__(self, *args):
        return False


def install_client(monkeypatch, response=None, error=None, captured=None):
    class Client:
        def __init__(self, *a, **kw):
            if captured is not None:
                captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, **kw):
            if captured is not None:
                captured["method"] = method
                captured["url"] = url
                captured.update(kw)
            if error is not None:
                raise error
            return StreamContext(response)

    monkeypatch.setattr("httpx.Client", Client)


def test_build_payload_shape():
    gc = GeminiClient(SettingsStub())
    payload = gc.build_payload("full prompt")
    assert payload["contents"] == [{"parts": [{"text": "full prompt"}]}]
    assert payload["generationConfig"] == {"temperature": 0.7, "topP": 0.8, "topK": 40, "maxOutputTokens": 2048}
    categories = [s["category"] for s in payload["safetySettings"]]
    assert categories == [
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    ]
    assert {s["threshold"] for s in payload["safetySettings"]} == {"BLOCK_MEDIUM_AND_ABOVE"}


def test_build_payload_overrides_generation():
    gc = GeminiClient(SettingsStub())
    payload = gc.build_payload("p", generation=GenerationConfig(temperature=0.1, top_p=0.5, top_k=5, max_output_tokens=10), safety_settings=[])
    assert payload["generationConfig"]["temperature"] == 0.1
    assert payload["safetySettings"] == []


def test_stream_raw_yields_chunks_and_passes_key_as_query(monkeypatch):
    captured = {}
    install_client(monkeypatch, response=FakeResponse(chunks=["[{", "", "\"a\": 1}"]), captured=captured)
    gc = GeminiClient(SettingsStub())
    chunks = list(gc.stream_raw({"contents": []}, "secret-key"))
    assert chunks == ["[{", "\"a\": 1}"]
    assert captured["method"] == "POST"
    assert captured["url"].endswith("/models/gemini-2.0-flash:streamGenerateContent")
    assert captured["params"] == {"key": "secret-key"}
    assert captured["json"] == {"contents": []}
    assert captured["client_kwargs"]["timeout"] == 1.0


def test_stream_raw_error_status_carries_body(monkeypatch):
    resp = FakeResponse(status_code=400, body='{"error": {"message": "API key not valid"}}')
    install_client(monkeypatch, response=resp)
    gc = GeminiClient(SettingsStub())
    with pytest.raises(RequestFailed) as exc:
        list(gc.stream_raw({}, "bad"))
    assert exc.value.status == 400
    assert "API key not valid" in exc.value.body
    assert exc.value.code == "REQUEST_FAILED"
    assert resp.read_called


def test_stream_raw_rate_limit(monkeypatch):
    install_client(monkeypatch, response=FakeResponse(status_code=429, body="slow down"))
    gc = GeminiClient(SettingsStub())
    with pytest.raises(RateLimitError) as exc:
        list(gc.stream_raw({}, "k"))
    assert exc.value.status == 429
    assert isinstance(exc.value, RequestFailed)


def test_stream_raw_zero_length_body_ends_normally(monkeypatch):
    install_client(monkeypatch, response=FakeResponse(chunks=[""]))
    gc = GeminiClient(SettingsStub())
    assert list(gc.stream_raw({}, "k")) == []


def test_stream_raw_no_content_status(monkeypatch):
    install_client(monkeypatch, response=FakeResponse(status_code=204))
    gc = GeminiClient(SettingsStub())
    with pytest.raises(EmptyBody) as exc:
        list(gc.stream_raw({}, "k"))
    assert exc.value.code == "EMPTY_BODY"
    assert exc.value.extra["status"] == 204


def test_model_resolved_through_registry():
    gc = GeminiClient(SettingsStub())
    assert gc.model_config.provider_model == "gemini-2.0-flash"
    assert gc.model_config is get_model_config("gemini", "podcast-chat")
    with pytest.raises(KeyError):
        GeminiClient(SettingsStub(), model="unknown-model")
    with pytest.raises(KeyError):
        get_provider_config("kimi")


def test_stream_raw_network_errors(monkeypatch):
    install_client(monkeypatch, error=httpx.ConnectError("connection refused"))
    gc = GeminiClient(SettingsStub())
    with pytest.raises(NetworkError) as exc:
        list(gc.stream_raw({}, "k"))
    assert exc.value.code == "NETWORK_ERROR"


def test_stream_raw_read_timeout(monkeypatch):
    install_client(monkeypatch, error=httpx.ReadTimeout("read timed out"))
    gc = GeminiClient(SettingsStub())
    with pytest.raises(StreamTimeout):
        list(gc.stream_raw({}, "k"))


def test_create_provider_default():
    provider = create_provider(cfg=SettingsStub())
    assert isinstance(provider, GeminiClient)
    with pytest.raises(KeyError):
        create_provider("kimi", cfg=SettingsStub())
