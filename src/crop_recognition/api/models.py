"""Pydantic models for API request/response schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from crop_recognition.postprocess.types import Prediction


class BoxSchema(BaseModel):
    """Bounding box in original image pixels."""

    x: float
    y: float
    w: float
    h: float


class PredictionSchema(BaseModel):
    """One ranked prediction.

    Attributes:
        class_id: Model class index
        label: Model label string for the class
        display_name: Localized name, empty when unknown
        confidence: Probability in [0, 1]
        box: Bounding box for detection models, None for classifiers
    """

    class_id: int
    label: str
    display_name: str = ""
    confidence: float
    box: Optional[BoxSchema] = None

    @classmethod
    def from_prediction(cls, prediction: Prediction, display_name: str = "") -> "PredictionSchema":
        box = None
        if prediction.box is not None:
            x, y, w, h = prediction.box.as_tuple()
            box = BoxSchema(x=x, y=y, w=w, h=h)
        return cls(
            class_id=prediction.class_id,
            label=prediction.label,
            display_name=display_name,
            confidence=prediction.confidence,
            box=box,
        )


class PredictResponse(BaseModel):
    """Response model for /predict endpoint.

    Attributes:
        request_id: Unique request identifier for tracing
        predictions: Ranked predictions, empty when nothing is confident enough
        timing: Performance breakdown in milliseconds
    """

    request_id: str
    predictions: list[PredictionSchema]
    timing: dict[str, float] = Field(
        description="Performance timing breakdown in milliseconds"
    )


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = "healthy"
    model_loaded: bool
    task: Optional[str] = None


class AgriculturalRequest(BaseModel):
    """JSON body of /api/recognition/agricultural.

    The image is a base64 encoded JPEG or PNG.
    """

    title: Optional[str] = None
    image: str
    timestamp: int
    device_code: Optional[str] = None
    license_key: Optional[str] = None


class AgriculturalData(BaseModel):
    en_name: str = ""
    cn_name: str = ""


class AgriculturalResponse(BaseModel):
    """Envelope returned by /api/recognition/agricultural.

    result_code is 0 on success and -1 on any failure, with the error text in
    message.
    """

    result_code: int
    message: str
    servertime: int
    data: AgriculturalData
