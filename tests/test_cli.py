from __future__ import annotations

import json

import httpx
import pytest

from conftest import FakeRecognizer, RecordingTransport, generate_reply
from invoice_parser.cli import main as cli_main
from invoice_parser.extraction.pipeline import ExtractionPipeline


@pytest.fixture
def image_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "invoice.jpg"
    path.write_bytes(b"\xff\xd8 jpeg bytes")
    return path


def _install(monkeypatch, reply, recognizer=None):
    transport = RecordingTransport(reply)
    recognizer = recognizer or FakeRecognizer("Invoice #123, Total: 45.00")

    def factory(dotenv_dir=None):
        return ExtractionPipeline(recognizer, transport=transport, dotenv_dir=dotenv_dir)

    monkeypatch.setattr(cli_main, "ExtractionPipeline", factory)
    return transport, recognizer


def test_extract_prints_json(image_file, monkeypatch, capsys):
    transport, _ = _install(monkeypatch, generate_reply('{"invoice_number": "123", "vendor_name": "Café Ü"}'))

    code = cli_main.main(["extract", "--source", str(image_file), "--model", "llama3.2", "--language", "deu"])

    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["invoice_number"] == "123"
    assert data["vendor_name"] == "Café Ü"
    assert data["total_amount"] == ""
    assert transport.bodies()[0]["model"] == "llama3.2"


def test_extract_cloud_options(image_file, monkeypatch):
    transport, _ = _install(monkeypatch, generate_reply("{}"))

    code = cli_main.main(
        [
            "extract",
            "--source", str(image_file),
            "--provider", "cloud",
            "--base-url", "https://ollama.example.com",
            "--api-key", "tok",
        ]
    )

    assert code == 0
    assert transport.requests[0].headers["Authorization"] == "Bearer tok"


def test_unknown_provider_exit_code(image_file, monkeypatch):
    transport, recognizer = _install(monkeypatch, generate_reply("{}"))

    assert cli_main.main(["extract", "--source", str(image_file), "--provider", "openai"]) == 2
    assert transport.requests == []
    assert recognizer.calls == []


def test_missing_source_exit_code(tmp_path, monkeypatch):
    _install(monkeypatch, generate_reply("{}"))

    assert cli_main.main(["extract", "--source", str(tmp_path / "nope.png")]) == 2


def test_upstream_failure_exit_code(image_file, monkeypatch):
    _install(monkeypatch, lambda request: httpx.Response(500, text="boom"))

    assert cli_main.main(["extract", "--source", str(image_file)]) == 1


def test_ocr_prints_text(image_file, monkeypatch, capsys):
    _, recognizer = _install(monkeypatch, generate_reply("{}"))

    code = cli_main.main(["ocr", "--source", str(image_file), "--language", "fra"])

    assert code == 0
    assert capsys.readouterr().out.strip() == "Invoice #123, Total: 45.00"
    assert recognizer.calls[0]["language"] == "fra"


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        cli_main.main([])


def test_serve_runs_uvicorn(monkeypatch, tmp_path):
    import uvicorn

    captured = {}

    def fake_run(app, **kwargs):
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(uvicorn, "run", fake_run)

    code = cli_main.main(["serve", "--port", "8123", "--allow-origin", "*", "--log-level", "warning"])

    assert code == 0
    assert captured["port"] == 8123
    assert captured["host"] == "127.0.0.1"
    assert captured["app"].state.pipeline is not None
