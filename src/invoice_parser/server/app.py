from __future__ import annotations

import contextlib
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ..config import CLOUD, LEGACY, LOCAL, MULTIMODAL
from ..errors import CLIENT_FAULT_STAGES, ExtractionError
from ..extraction.pipeline import ExtractionPipeline
from ..logging import get_logger

LOG = get_logger("server")

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_STATIC_DIR = "public"

# Route path -> provider name; all accept the upload in field `invoice`.
PARSE_ROUTES: Tuple[Tuple[str, str], ...] = (
    ("/parse", LOCAL),
    ("/parse/ollama-local", LOCAL),
    ("/parse/ollama-cloud", CLOUD),
    ("/parse/gemini", MULTIMODAL),
    ("/parse/gemma", LOCAL),
    ("/parse/legacy", LEGACY),
)


class UploadRejected(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error(message: str, status_code: int, stage: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    if stage:
        body["stage"] = stage
    return JSONResponse(body, status_code=status_code)


def _pipeline_error(exc: ExtractionError) -> JSONResponse:
    status = 400 if exc.stage in CLIENT_FAULT_STAGES else 500
    if status == 500:
        LOG.error(f"Pipeline failed at {exc.stage}: {exc}")
    else:
        LOG.warning(f"Rejected request at {exc.stage}: {exc}")
    return JSONResponse(exc.as_dict(), status_code=status)


async def _read_upload(
    request: Request, field: str, *, images_only: bool
) -> Tuple[bytes, Optional[str], Dict[str, Any]]:
    """Return (file bytes, content type, remaining form fields)."""
    form = await request.form()
    upload = form.get(field)
    if not isinstance(upload, UploadFile):
        raise UploadRejected(f"No file uploaded in field `{field}`", 400)
    content_type = upload.content_type or None
    if images_only and not (content_type or "").startswith("image/"):
        raise UploadRejected("Only image files are allowed!", 400)
    data = await upload.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadRejected(f"File exceeds {MAX_UPLOAD_BYTES} bytes", 413)
    fields = {k: v for k, v in form.items() if k != field and isinstance(v, str)}
    return data, content_type, fields


def create_app(
    pipeline: Optional[ExtractionPipeline] = None,
    *,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    dotenv_dir: Optional[str] = None,
    warm_up: bool = True,
) -> Starlette:
    """Create the upload API and, when present, serve the static frontend."""

    pipeline = pipeline or ExtractionPipeline(dotenv_dir=dotenv_dir)

    @contextlib.asynccontextmanager
    async def lifespan(_: Starlette) -> AsyncIterator[None]:
        if warm_up and not pipeline.recognizer.ready:
            pipeline.recognizer.warm_up()
        yield

    def _parse_handler(provider: str):
        async def handler(request: Request) -> JSONResponse:
            try:
                image, content_type, fields = await _read_upload(request, "invoice", images_only=False)
            except UploadRejected as exc:
                return _error(exc.message, exc.status_code)
            if content_type and "mime_type" not in fields and "mimeType" not in fields:
                fields["mime_type"] = content_type
            try:
                options = pipeline.resolve(provider, fields)
                result = await pipeline.extract(image, provider, options, cancelled=request.is_disconnected)
            except ExtractionError as exc:
                return _pipeline_error(exc)
            return JSONResponse(result)

        handler.__name__ = f"parse_{provider}"
        return handler

    async def extract_text(request: Request) -> JSONResponse:
        try:
            image, _, fields = await _read_upload(request, "image", images_only=True)
        except UploadRejected as exc:
            return _error(exc.message, exc.status_code)
        try:
            options = pipeline.resolve(LEGACY, fields)
            text = await pipeline.extract_text(image, options, cancelled=request.is_disconnected)
        except ExtractionError as exc:
            LOG.error(f"Legacy text extraction failed: {exc}")
            return _error("Failed to extract text from image", 400 if exc.stage in CLIENT_FAULT_STAGES else 500, exc.stage)
        return JSONResponse({"extractedText": text})

    async def upload(request: Request) -> JSONResponse:
        if not pipeline.recognizer.ready:
            return _error("Server is not ready yet, please try again in a moment.", 503)
        try:
            image, _, fields = await _read_upload(request, "image", images_only=True)
        except UploadRejected as exc:
            return _error(exc.message, exc.status_code)
        try:
            options = pipeline.resolve(LOCAL, fields)
            text = await pipeline.recognize(image, language=options.language, verbose=options.verbose)
        except ExtractionError as exc:
            return _pipeline_error(exc)
        return JSONResponse({"text": text})

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "ocr_ready": pipeline.recognizer.ready})

    routes = [Route(path, _parse_handler(provider), methods=["POST"]) for path, provider in PARSE_ROUTES]
    routes += [
        Route("/extract-text", extract_text, methods=["POST"]),
        Route("/api/upload", upload, methods=["POST"]),
        Route("/api/health", health, methods=["GET"]),
    ]

    app = Starlette(debug=False, routes=routes, lifespan=lifespan)

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    candidate = os.path.abspath(static_dir or DEFAULT_STATIC_DIR)
    if os.path.isdir(candidate):
        LOG.info(f"Serving static files from {candidate}")
        app.mount("/", StaticFiles(directory=candidate, html=True), name="static")
    else:
        LOG.info(f"No static directory at {candidate}; API only.")

    app.state.pipeline = pipeline
    return app


__all__ = ["create_app", "PARSE_ROUTES", "MAX_UPLOAD_BYTES"]
