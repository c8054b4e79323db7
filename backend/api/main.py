"""
FastAPI application for the classifier studio.

Provides REST endpoints for sample collection, training and model
management, plus a WebSocket for frame-by-frame prediction.
"""

import logging
from functools import lru_cache
from typing import List

from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import (
    DebugModeRequest,
    ModelResponse,
    PredictRequest,
    PredictResponse,
    PredictionBody,
    SampleRemovalResponse,
    SampleRequest,
    SampleResponse,
    ThresholdRequest,
    TrainRequest,
)
from classifier_engine.studio import ClassifierStudio
from shared.config import settings
from shared.errors import (
    ArtifactLoadFailed,
    ArtifactNotFound,
    ClassifierError,
    DimensionMismatch,
    DuplicateName,
    EmptyDataset,
    FeatureExtractionFailed,
    IndexOutOfRange,
    InferenceFailed,
    ModelNotFound,
    NotReady,
    PersistenceFailed,
    QuotaExceeded,
    TrainingFailed,
    TrainingInProgress,
)
from shared.logging_utils import configure_logging

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    DimensionMismatch: 422,
    FeatureExtractionFailed: 422,
    TrainingFailed: 422,
    EmptyDataset: 400,
    IndexOutOfRange: 404,
    ModelNotFound: 404,
    ArtifactNotFound: 404,
    DuplicateName: 409,
    TrainingInProgress: 409,
    NotReady: 409,
    QuotaExceeded: 507,
    PersistenceFailed: 503,
    ArtifactLoadFailed: 503,
    InferenceFailed: 500,
}

# Create FastAPI app
app = FastAPI(
    title="Classifier Studio API",
    description="Collect labelled feature vectors, train small classifiers and run gated predictions",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache()
def get_studio() -> ClassifierStudio:
    """Process-wide studio instance."""
    return ClassifierStudio(settings)


def status_for(error: ClassifierError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def error_body(error: Exception) -> dict:
    kind = getattr(error, "kind", "invalid_request")
    return {"error": kind, "detail": str(error)}


@app.exception_handler(ClassifierError)
async def classifier_error_handler(request, exc: ClassifierError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content=error_body(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=400, content=error_body(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(status_code=422, content={"error": "invalid_request", "detail": detail})


def model_response(studio: ClassifierStudio, entry) -> ModelResponse:
    return ModelResponse(
        **entry.model_dump(),
        selected=entry.id == studio.engine.selected_model_id,
    )


def prediction_response(studio: ClassifierStudio, prediction) -> PredictResponse:
    return PredictResponse(
        model_id=studio.engine.selected_model_id,
        prediction=PredictionBody(**prediction.to_dict()) if prediction else None,
    )


@app.on_event("startup")
async def startup_event():
    """Initialize services on app startup."""
    logger.info("=" * 70)
    logger.info("CLASSIFIER STUDIO API")
    logger.info("=" * 70)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Confidence threshold: {settings.confidence_threshold}")
    logger.info("")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down API server...")


@app.get("/")
async def root():
    """Service banner."""
    return {
        "status": "running",
        "service": "Classifier Studio API",
        "version": "1.0.0",
        "websocket_endpoint": "/ws/predict",
    }


@app.get("/health")
async def health(studio: ClassifierStudio = Depends(get_studio)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "engine_state": studio.engine.state.value,
        "training": studio.is_training,
    }


@app.get("/stats")
async def stats(studio: ClassifierStudio = Depends(get_studio)):
    return studio.get_stats()


# Samples


@app.get("/samples")
async def sample_stats(studio: ClassifierStudio = Depends(get_studio)):
    return studio.sample_stats()


@app.post("/samples", response_model=SampleResponse, status_code=201)
async def add_sample(body: SampleRequest, studio: ClassifierStudio = Depends(get_studio)):
    return studio.add_sample(body.features, body.label)


@app.delete("/samples/{index}", response_model=SampleRemovalResponse)
async def remove_sample(index: int, studio: ClassifierStudio = Depends(get_studio)):
    return studio.remove_sample(index)


@app.delete("/samples", response_model=SampleRemovalResponse)
async def clear_samples(studio: ClassifierStudio = Depends(get_studio)):
    return studio.clear_samples()


# Models


@app.post("/models/train", response_model=ModelResponse, status_code=201)
def train_model(body: TrainRequest, studio: ClassifierStudio = Depends(get_studio)):
    """Train synchronously in the worker threadpool."""
    entry = studio.train(
        body.name,
        overwrite=body.overwrite,
        clear_samples_after=body.clear_samples_after,
    )
    return model_response(studio, entry)


@app.get("/models", response_model=List[ModelResponse])
async def list_models(studio: ClassifierStudio = Depends(get_studio)):
    return [model_response(studio, entry) for entry in studio.list_models()]


@app.post("/models/{model_id}/select", response_model=ModelResponse)
def select_model(model_id: str, studio: ClassifierStudio = Depends(get_studio)):
    entry = studio.select_model(model_id)
    return model_response(studio, entry)


@app.delete("/models/{model_id}", response_model=ModelResponse)
def delete_model(model_id: str, studio: ClassifierStudio = Depends(get_studio)):
    entry = studio.delete_model(model_id)
    return model_response(studio, entry)


# Inference


@app.post("/predict", response_model=PredictResponse)
def predict(body: PredictRequest, studio: ClassifierStudio = Depends(get_studio)):
    prediction = studio.predict(body.features, auxiliary_signal=body.auxiliary_signal)
    return prediction_response(studio, prediction)


@app.put("/settings/confidence-threshold")
async def set_confidence_threshold(
    body: ThresholdRequest, studio: ClassifierStudio = Depends(get_studio)
):
    studio.set_confidence_threshold(body.value)
    return {"confidence_threshold": studio.engine.confidence_threshold}


@app.put("/settings/debug-mode")
async def set_debug_mode(body: DebugModeRequest, studio: ClassifierStudio = Depends(get_studio)):
    studio.set_debug_mode(body.enabled)
    return {"debug_mode": studio.engine.debug_mode}


@app.websocket("/ws/predict")
async def predict_stream(websocket: WebSocket, studio: ClassifierStudio = Depends(get_studio)):
    """
    Frame-by-frame prediction stream.

    Client -> Server messages:
        {"type": "features", "features": [0.1, 0.2, ...], "auxiliary_signal": ...}
        {"type": "ping", "timestamp": ...}

    Server -> Client messages:
        {"type": "prediction", "model_id": "...", "prediction": {...} | null}
        {"type": "error", "error": "not_ready", "detail": "..."}
        {"type": "pong", "timestamp": ...}

    A failed frame answers with an error message and the stream stays open.
    """
    await websocket.accept()
    logger.info("Prediction stream opened")

    try:
        while True:
            data = await websocket.receive_json()
            message_type = data.get("type")

            if message_type == "features":
                try:
                    prediction = studio.predict(
                        data.get("features") or [],
                        auxiliary_signal=data.get("auxiliary_signal"),
                    )
                except (ClassifierError, ValueError) as e:
                    await websocket.send_json({"type": "error", **error_body(e)})
                    continue

                response = prediction_response(studio, prediction)
                await websocket.send_json({"type": "prediction", **response.model_dump()})

            elif message_type == "ping":
                await websocket.send_json({"type": "pong", "timestamp": data.get("timestamp")})

            else:
                await websocket.send_json(
                    {
                        "type": "error",
                        "error": "invalid_request",
                        "detail": f"Unknown message type: {message_type}",
                    }
                )

    except WebSocketDisconnect:
        logger.info("Prediction stream closed by client")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower(),
    )
