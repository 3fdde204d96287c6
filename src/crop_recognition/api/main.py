"""FastAPI application for the crop recognition service.

This module provides the HTTP API:
- POST /predict: Multipart image upload, ranked predictions as JSON
- POST /file/{file_name}: Raw image body, top prediction as plain text
- POST /api/recognition/agricultural: Base64 JSON image, result envelope
- GET /health: Service health check

The model is loaded once during the lifespan startup. A model that cannot be
loaded aborts startup, so the service never accepts requests without one.
"""

import base64
import binascii
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import anyio
import anyio.to_thread
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse

from crop_recognition.config import get_pipeline_config
from crop_recognition.errors import (
    DecodeError,
    InferenceError,
    PipelineError,
    ShapeError,
)
from crop_recognition.pipeline import InferencePipeline, PipelineResult

from .config import Settings, get_settings
from .logger import bind_request_id, setup_logging
from .models import (
    AgriculturalData,
    AgriculturalRequest,
    AgriculturalResponse,
    HealthResponse,
    PredictionSchema,
    PredictResponse,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "成功"


def _load_pipeline(settings: Settings) -> InferencePipeline:
    config = get_pipeline_config(settings.PIPELINE_CONFIG)
    pipeline = InferencePipeline.from_paths(
        Path(settings.MODEL_PATH),
        Path(settings.LABELS_PATH),
        config,
    )
    if settings.WARMUP:
        pipeline.warmup()
    return pipeline


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[InferencePipeline] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings (default: loaded from environment)
        pipeline: Pre-built pipeline; when given, startup skips model loading

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager.

        Startup: setup logging, load config, labels and model, build the pipeline.
        Shutdown: release the pipeline.
        """
        setup_logging(settings.LOG_LEVEL)
        logger.info("Starting crop recognition service", extra={"port": settings.PORT})

        app.state.limiter = anyio.CapacityLimiter(settings.MAX_CONCURRENT_INFERENCES)

        if pipeline is not None:
            app.state.pipeline = pipeline
        else:
            # ModelLoadError propagates and aborts startup
            logger.info("Initializing inference pipeline", extra={"model": settings.MODEL_PATH})
            app.state.pipeline = _load_pipeline(settings)

        logger.info("Service ready for requests")

        yield

        logger.info("Shutting down crop recognition service")
        app.state.pipeline = None

    app = FastAPI(
        title="Crop Recognition Service",
        description="Identifies the crop or vegetable in an image with a local ONNX model",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = None

    _register_routes(app)
    return app


def _get_pipeline(request: Request) -> InferencePipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        logger.error("Pipeline not initialized", extra={"endpoint": request.url.path})
        raise HTTPException(status_code=503, detail="Service not ready")
    return pipeline


def _upload_limit(request: Request) -> int:
    return request.app.state.settings.MAX_UPLOAD_BYTES


def _too_large(limit: int) -> HTTPException:
    return HTTPException(status_code=413, detail=f"Image larger than {limit} bytes")


async def _read_body(request: Request) -> bytes:
    """Read a raw request body, stopping as soon as it exceeds the upload cap."""
    limit = _upload_limit(request)

    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise _too_large(limit)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise _too_large(limit)
    return bytes(body)


async def _read_upload(request: Request, file: UploadFile) -> bytes:
    """Read at most one byte past the upload cap from a multipart file."""
    limit = _upload_limit(request)
    image_bytes = await file.read(limit + 1)
    if len(image_bytes) > limit:
        raise _too_large(limit)
    return image_bytes


async def _run_pipeline(request: Request, image_bytes: bytes) -> PipelineResult:
    """Run the blocking pipeline on a worker thread.

    The capacity limiter bounds how many forward passes overlap; it never
    serializes them onto a single context.
    """
    pipeline = _get_pipeline(request)

    limit = _upload_limit(request)
    if len(image_bytes) > limit:
        raise _too_large(limit)

    return await anyio.to_thread.run_sync(
        pipeline.run,
        image_bytes,
        limiter=request.app.state.limiter,
    )


def _register_routes(app: FastAPI) -> None:

    @app.post("/predict", response_model=PredictResponse)
    async def predict(request: Request, file: UploadFile = File(...)):
        """Run the pipeline on an uploaded image.

        Args:
            file: Uploaded image file (JPEG, PNG, etc.)

        Returns:
            PredictResponse with ranked predictions and timing

        Raises:
            HTTPException: 400 for undecodable images, 413 for oversized
                uploads, 500 for inference failures, 503 before startup
        """
        request_id = bind_request_id()

        logger.info("Received predict request", extra={"endpoint": "/predict"})

        image_bytes = await _read_upload(request, file)

        try:
            result = await _run_pipeline(request, image_bytes)
        except (DecodeError, ShapeError) as e:
            logger.warning(
                f"Rejected image: {e}",
                extra={"endpoint": "/predict", "status_code": 400, "error": type(e).__name__},
            )
            raise HTTPException(status_code=400, detail=str(e))
        except InferenceError as e:
            logger.error(
                f"Predict failed: {e}",
                extra={"endpoint": "/predict", "status_code": 500, "error": type(e).__name__},
                exc_info=True,
            )
            raise HTTPException(status_code=500, detail=str(e))

        pipeline = request.app.state.pipeline
        logger.info(
            "Predict complete",
            extra={
                "endpoint": "/predict",
                "latency_ms": result.timing["total_ms"],
                "predictions": len(result.predictions),
                "status_code": 200,
            },
        )

        return PredictResponse(
            request_id=request_id,
            predictions=[
                PredictionSchema.from_prediction(p, pipeline.labels.display_name(p.label))
                for p in result.predictions
            ],
            timing=result.timing,
        )

    @app.post("/file/{file_name}", response_class=PlainTextResponse)
    async def predict_raw_body(file_name: str, request: Request) -> str:
        """Run the pipeline on the raw request body.

        Returns the top prediction as "<label> <confidence>", an empty string
        when nothing passes the threshold, or the error text for bad images.
        """
        bind_request_id()
        logger.info(f"Received raw upload {file_name}", extra={"endpoint": "/file"})

        image_bytes = await _read_body(request)

        try:
            result = await _run_pipeline(request, image_bytes)
        except PipelineError as e:
            logger.warning(
                f"Raw upload failed: {e}",
                extra={"endpoint": "/file", "error": type(e).__name__},
            )
            return str(e)

        top = result.top
        if top is None:
            return ""
        return f"{top.label} {top.confidence:.4f}"

    @app.post("/api/recognition/agricultural", response_model=AgriculturalResponse)
    async def agricultural(request: Request, body: AgriculturalRequest):
        """Recognize a base64 encoded crop image.

        Image and inference failures are answered with HTTP 200, result_code
        -1 and the error text in message.
        """
        bind_request_id()
        logger.info(
            f"Agricultural request title={body.title!r} timestamp={body.timestamp} "
            f"device={body.device_code!r}",
            extra={"endpoint": "/api/recognition/agricultural"},
        )

        data = AgriculturalData()
        limit = _upload_limit(request)
        # Base64 of `limit` bytes is at most 4 * ceil(limit / 3) characters
        if len(body.image) > 4 * -(-limit // 3):
            raise _too_large(limit)

        try:
            image_bytes = base64.b64decode(body.image, validate=True)
            result = await _run_pipeline(request, image_bytes)
        except binascii.Error as e:
            result_code, message = -1, f"Invalid base64 image: {e}"
        except PipelineError as e:
            result_code, message = -1, str(e)
        else:
            result_code, message = 0, SUCCESS_MESSAGE
            top = result.top
            if top is not None:
                pipeline = request.app.state.pipeline
                data = AgriculturalData(
                    en_name=top.label,
                    cn_name=pipeline.labels.display_name(top.label),
                )

        if result_code != 0:
            logger.warning(
                f"Agricultural request failed: {message}",
                extra={"endpoint": "/api/recognition/agricultural"},
            )

        return AgriculturalResponse(
            result_code=result_code,
            message=message,
            servertime=int(time.time()),
            data=data,
        )

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        """Health check endpoint."""
        bind_request_id()

        pipeline = getattr(request.app.state, "pipeline", None)
        return HealthResponse(
            status="healthy" if pipeline is not None else "starting",
            model_loaded=pipeline is not None,
            task=pipeline.kind.value if pipeline is not None else None,
        )


# Exported application instance for uvicorn
app = create_app()


def main() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
