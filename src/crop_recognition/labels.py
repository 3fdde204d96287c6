"""Class label table.

Maps model class ids to label strings loaded from a newline separated file,
and labels to localized display names from pipeline.yaml.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence

logger = logging.getLogger(__name__)


class LabelMap:
    """Class id → label → display name lookup.

    Attributes:
        labels: Labels indexed by class id
        display_names: Label to localized display name
    """

    def __init__(
        self,
        labels: Sequence[str],
        display_names: Optional[Dict[str, str]] = None,
    ) -> None:
        self.labels = tuple(labels)
        self.display_names = dict(display_names or {})

    @classmethod
    def from_file(
        cls,
        labels_file: Path,
        display_names: Optional[Dict[str, str]] = None,
    ) -> "LabelMap":
        """Load labels from a file, one per line.

        Blank lines are skipped.

        Raises:
            FileNotFoundError: If labels file not found
            ValueError: If the file contains no labels
        """
        labels_file = Path(labels_file)
        if not labels_file.exists():
            raise FileNotFoundError(f"Labels file not found: {labels_file}")

        with open(labels_file, encoding="utf-8") as f:
            labels = [line.strip() for line in f if line.strip()]

        if not labels:
            raise ValueError(f"No labels found in {labels_file}")

        logger.info(f"Loaded {len(labels)} class labels from {labels_file}")
        return cls(labels, display_names)

    def __len__(self) -> int:
        return len(self.labels)

    def label_for(self, class_id: int) -> str:
        """Label of a class id, or the id itself when the table is too short."""
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return str(class_id)

    def display_name(self, label: str) -> str:
        """Localized display name, empty string when unknown."""
        return self.display_names.get(label, "")
