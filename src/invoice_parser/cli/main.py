from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import os
import sys
from typing import Any, Dict, Sequence

from ..config import FALLBACK_CHOICES, LOCAL, PROVIDER_NAMES
from ..errors import CLIENT_FAULT_STAGES, ExtractionError
from ..extraction.pipeline import ExtractionPipeline
from ..logging import get_logger, set_level

LOG = get_logger("cli-main")


def _read_source(path: str) -> bytes:
    with open(os.path.abspath(os.path.expanduser(path)), "rb") as f:
        return f.read()


def _exit_code(exc: ExtractionError) -> int:
    return 2 if exc.stage in CLIENT_FAULT_STAGES else 1


def _overrides(ns: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "model": ns.model,
        "language": ns.language,
        "base_url": ns.base_url,
        "api_key": ns.api_key,
        "timeout": ns.timeout,
        "fallback": ns.fallback,
    }
    if ns.verbose:
        overrides["verbose"] = True
    mime, _ = mimetypes.guess_type(ns.source)
    if mime:
        overrides["mime_type"] = mime
    return {k: v for k, v in overrides.items() if v is not None}


def _handle_extract(ns: argparse.Namespace) -> int:
    try:
        image = _read_source(ns.source)
    except OSError as exc:
        LOG.error(f"Cannot read {ns.source}: {exc}")
        return 2
    pipeline = ExtractionPipeline(dotenv_dir=os.getcwd())
    try:
        options = pipeline.resolve(ns.provider, _overrides(ns))
        result = asyncio.run(pipeline.extract(image, ns.provider, options))
    except ExtractionError as exc:
        LOG.error(f"Extraction failed at {exc.stage}: {exc}")
        return _exit_code(exc)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


def _handle_ocr(ns: argparse.Namespace) -> int:
    try:
        image = _read_source(ns.source)
    except OSError as exc:
        LOG.error(f"Cannot read {ns.source}: {exc}")
        return 2
    pipeline = ExtractionPipeline(dotenv_dir=os.getcwd())
    try:
        options = pipeline.resolve(LOCAL, {"language": ns.language})
        text = asyncio.run(pipeline.recognize(image, language=options.language, verbose=ns.verbose))
    except ExtractionError as exc:
        LOG.error(f"OCR failed at {exc.stage}: {exc}")
        return _exit_code(exc)
    print(text)
    return 0


def _handle_serve(ns: argparse.Namespace) -> int:
    from ..server import create_app
    import uvicorn

    set_level(ns.log_level)
    if ns.reload:
        if ns.static_dir or ns.allow_origins:
            LOG.warning("--static-dir and --allow-origin are ignored with --reload; defaults apply.")
        uvicorn.run(
            "invoice_parser.server.app:create_app",
            factory=True,
            reload=True,
            host=ns.host,
            port=ns.port,
            log_level=ns.log_level,
        )
        return 0
    app = create_app(
        static_dir=ns.static_dir,
        allow_origins=ns.allow_origins,
        dotenv_dir=os.getcwd(),
    )
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-parser",
        description="Extract structured invoice or label data from images.",
    )
    parser.add_argument("--quiet", action="store_true", help="Only log warnings and errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract structured JSON from an image.")
    extract.add_argument("--source", required=True, help="Path to the image")
    extract.add_argument("--provider", default=LOCAL, help=f"One of: {', '.join(PROVIDER_NAMES)}")
    extract.add_argument("--model")
    extract.add_argument("--language", help="Tesseract language code (default: OCR_LANGUAGE or eng)")
    extract.add_argument("--base-url", help="Inference server base URL")
    extract.add_argument("--api-key", help="Bearer token (cloud) or Google API key (multimodal)")
    extract.add_argument("--timeout", type=float, help="Request timeout in seconds")
    extract.add_argument("--fallback", choices=FALLBACK_CHOICES, help="Multimodal fallback policy")
    extract.add_argument("--verbose", action="store_true", help="Log OCR progress")
    extract.set_defaults(handler=_handle_extract)

    ocr = subparsers.add_parser("ocr", help="Print the OCR text of an image.")
    ocr.add_argument("--source", required=True)
    ocr.add_argument("--language")
    ocr.add_argument("--verbose", action="store_true")
    ocr.set_defaults(handler=_handle_ocr)

    serve = subparsers.add_parser("serve", help="Run the upload API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.add_argument("--log-level", default="info")
    serve.add_argument("--static-dir", help="Directory of static files (default: ./public)")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    args = build_parser().parse_args(provided)
    if args.quiet:
        set_level("WARNING")
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
