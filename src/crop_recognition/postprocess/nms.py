"""Non-Maximum Suppression.

Greedy NMS over decoded candidates. Candidates are ordered with a stable
descending-confidence sort, so equal confidences keep their input order and
repeated runs on identical input return identical output.

Suppression is class-aware by default (a box only suppresses boxes of the
same class); pass class_aware=False to suppress across classes.
"""

from typing import List, Sequence

import numpy as np

from crop_recognition.postprocess.types import BoundingBox, Candidate


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection-over-Union of two (x, y, w, h) boxes.

    Returns 0.0 when the union is empty (two degenerate boxes).
    """
    inter_w = max(0.0, min(a.x2, b.x2) - max(a.x1, b.x1))
    inter_h = max(0.0, min(a.y2, b.y2) - max(a.y1, b.y1))
    intersection = inter_w * inter_h

    union = a.area + b.area - intersection
    if union <= 0.0:
        return 0.0
    return intersection / union


def sort_by_confidence(candidates: Sequence[Candidate]) -> List[Candidate]:
    """Stable sort by descending confidence."""
    return sorted(candidates, key=lambda c: -c.confidence)


def suppress(
    candidates: Sequence[Candidate],
    iou_threshold: float,
    class_aware: bool = True,
) -> List[Candidate]:
    """Apply greedy Non-Maximum Suppression.

    Without boxes (classification output) there is nothing to overlap and the
    candidates are only sorted.

    Args:
        candidates: Decoded candidates in any order
        iou_threshold: Candidates whose IoU with a kept box is strictly greater
            than this value are discarded. >= 1.0 disables suppression;
            negative values behave as 0.0.
        class_aware: Only compare boxes of the same class

    Returns:
        Kept candidates ordered by descending confidence
    """
    ordered = sort_by_confidence(candidates)
    iou_threshold = max(iou_threshold, 0.0)

    if not ordered or all(c.box is None for c in ordered):
        return ordered

    boxed = [c for c in ordered if c.box is not None]
    unboxed = [c for c in ordered if c.box is None]

    x1 = np.array([c.box.x1 for c in boxed], dtype=np.float64)
    y1 = np.array([c.box.y1 for c in boxed], dtype=np.float64)
    x2 = np.array([c.box.x2 for c in boxed], dtype=np.float64)
    y2 = np.array([c.box.y2 for c in boxed], dtype=np.float64)
    class_ids = np.array([c.class_id for c in boxed], dtype=np.int64)
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)

    # Indices into boxed, already in descending-confidence order
    order = np.arange(len(boxed))
    keep: List[int] = []

    while order.size > 0:
        i = int(order[0])
        keep.append(i)

        rest = order[1:]
        if rest.size == 0:
            break

        # Compute IoU with remaining boxes
        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        intersection = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        union = areas[i] + areas[rest] - intersection
        overlap = np.divide(
            intersection,
            union,
            out=np.zeros_like(intersection),
            where=union > 0,
        )

        suppressed = overlap > iou_threshold
        if class_aware:
            suppressed &= class_ids[rest] == class_ids[i]

        order = rest[~suppressed]

    kept = [boxed[i] for i in keep]
    if unboxed:
        kept = sort_by_confidence(kept + unboxed)
    return kept
