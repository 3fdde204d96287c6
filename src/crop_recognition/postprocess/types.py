"""Candidate and prediction records produced by output decoding."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box (x, y, w, h) in original image pixel coordinates."""

    x: float
    y: float
    w: float
    h: float

    @property
    def x1(self) -> float:
        return self.x

    @property
    def y1(self) -> float:
        return self.y

    @property
    def x2(self) -> float:
        return self.x + self.w

    @property
    def y2(self) -> float:
        return self.y + self.h

    @property
    def area(self) -> float:
        return max(0.0, self.w) * max(0.0, self.h)

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        return cls(x=float(x1), y=float(y1), w=float(x2 - x1), h=float(y2 - y1))

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.w, self.h)


@dataclass(frozen=True)
class Candidate:
    """Decoded model output before suppression.

    Attributes:
        confidence: Probability in [0, 1]
        class_id: Index into the label table
        box: Original-image box, None for classification output
    """

    confidence: float
    class_id: int
    box: Optional[BoundingBox] = None


@dataclass(frozen=True)
class Prediction:
    """Final, labeled result returned to the caller."""

    class_id: int
    label: str
    confidence: float
    box: Optional[BoundingBox] = None
