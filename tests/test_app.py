from __future__ import annotations

import httpx
from starlette.testclient import TestClient

from conftest import FakeRecognizer, RecordingTransport, generate_reply
from invoice_parser.extraction.pipeline import ExtractionPipeline
from invoice_parser.server import create_app
from invoice_parser.server.app import MAX_UPLOAD_BYTES

PNG = ("invoice.png", b"\x89PNG image", "image/png")


def _client(tmp_path, recognizer=None, reply=None):
    transport = RecordingTransport(reply or generate_reply('{"invoice_number": "123", "total_amount": "45.00"}'))
    pipeline = ExtractionPipeline(
        recognizer or FakeRecognizer("Invoice #123, Total: 45.00"),
        transport=transport,
        dotenv_dir=str(tmp_path),
    )
    app = create_app(pipeline=pipeline, static_dir=str(tmp_path / "missing"), warm_up=False)
    return TestClient(app), transport


def test_parse_returns_conformed_invoice(tmp_path):
    client, transport = _client(tmp_path)

    resp = client.post("/parse", files={"invoice": PNG})

    assert resp.status_code == 200
    data = resp.json()
    assert data["invoice_number"] == "123"
    assert data["customer_name"] == ""
    assert data["line_items"] == []
    assert str(transport.requests[0].url) == "http://localhost:11434/api/generate"


def test_parse_aliases_share_local_provider(tmp_path):
    client, transport = _client(tmp_path)

    for path in ("/parse/ollama-local", "/parse/gemma"):
        assert client.post(path, files={"invoice": PNG}).status_code == 200
    assert len(transport.requests) == 2


def test_parse_without_file(tmp_path):
    client, transport = _client(tmp_path)

    resp = client.post("/parse", data={"model": "gemma3"})

    assert resp.status_code == 400
    assert "invoice" in resp.json()["error"]
    assert transport.requests == []


def test_form_fields_override_options(tmp_path):
    client, transport = _client(tmp_path)

    resp = client.post(
        "/parse/ollama-cloud",
        files={"invoice": PNG},
        data={"baseUrl": "https://ollama.example.com", "apiKey": "tok", "model": "gpt-oss"},
    )

    assert resp.status_code == 200
    request = transport.requests[0]
    assert str(request.url) == "https://ollama.example.com/api/generate"
    assert request.headers["Authorization"] == "Bearer tok"
    assert transport.bodies()[0]["model"] == "gpt-oss"


def test_cloud_without_base_url_is_client_error(tmp_path):
    recognizer = FakeRecognizer("text")
    client, transport = _client(tmp_path, recognizer=recognizer)

    resp = client.post("/parse/ollama-cloud", files={"invoice": PNG})

    assert resp.status_code == 400
    assert resp.json()["stage"] == "configuration"
    assert transport.requests == []
    assert recognizer.calls == []


def test_gemini_without_key_is_client_error(tmp_path):
    client, _ = _client(tmp_path)

    resp = client.post("/parse/gemini", files={"invoice": PNG})

    assert resp.status_code == 400
    assert "GOOGLE_API_KEY" in resp.json()["error"]


def test_upstream_failure_is_server_error(tmp_path):
    client, _ = _client(tmp_path, reply=lambda request: httpx.Response(500, text="boom"))

    resp = client.post("/parse", files={"invoice": PNG})

    assert resp.status_code == 500
    assert resp.json()["stage"] == "transport"


def test_unparseable_model_output_is_server_error(tmp_path):
    client, _ = _client(tmp_path, reply=generate_reply("no json here"))

    resp = client.post("/parse", files={"invoice": PNG})

    assert resp.status_code == 500
    assert resp.json()["stage"] == "normalization"


def test_extract_text(tmp_path):
    client, transport = _client(tmp_path, reply=generate_reply("MODEL X1 230V"))

    resp = client.post("/extract-text", files={"image": PNG})

    assert resp.status_code == 200
    assert resp.json() == {"extractedText": "MODEL X1 230V"}
    assert transport.bodies()[0]["images"]


def test_extract_text_rejects_non_images(tmp_path):
    client, transport = _client(tmp_path)

    resp = client.post("/extract-text", files={"image": ("notes.txt", b"hello", "text/plain")})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Only image files are allowed!"
    assert transport.requests == []


def test_extract_text_rejects_large_files(tmp_path):
    client, transport = _client(tmp_path)

    big = ("big.png", b"0" * (MAX_UPLOAD_BYTES + 1), "image/png")
    resp = client.post("/extract-text", files={"image": big})

    assert resp.status_code == 413
    assert transport.requests == []


def test_upload_returns_ocr_text(tmp_path):
    client, transport = _client(tmp_path)

    resp = client.post("/api/upload", files={"image": PNG})

    assert resp.status_code == 200
    assert resp.json() == {"text": "Invoice #123, Total: 45.00"}
    assert transport.requests == []


def test_upload_before_warm_up_is_unavailable(tmp_path):
    client, _ = _client(tmp_path, recognizer=FakeRecognizer("x", ready=False))

    resp = client.post("/api/upload", files={"image": PNG})

    assert resp.status_code == 503


def test_lifespan_warms_up_recognizer(tmp_path):
    recognizer = FakeRecognizer("x", ready=False)
    pipeline = ExtractionPipeline(recognizer, dotenv_dir=str(tmp_path))
    app = create_app(pipeline=pipeline, static_dir=str(tmp_path / "missing"))

    with TestClient(app) as client:
        assert client.get("/api/health").json() == {"status": "ok", "ocr_ready": True}


def test_static_files_are_served(tmp_path):
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<h1>Invoice Parser</h1>", encoding="utf-8")
    app = create_app(pipeline=ExtractionPipeline(FakeRecognizer()), static_dir=str(public), warm_up=False)

    resp = TestClient(app).get("/")

    assert resp.status_code == 200
    assert "Invoice Parser" in resp.text
