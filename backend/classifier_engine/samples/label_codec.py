"""
Label codec for classifier outputs.

Derives the label <-> output index mapping from the labels present in a
sample set: distinct labels sorted, indices 0..K-1 assigned in order.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple, Union

import pandas as pd

from .sample_store import Sample

logger = logging.getLogger(__name__)


def _labels_of(samples: Iterable[Union[Sample, str]]) -> List[str]:
    return [s.label if isinstance(s, Sample) else str(s) for s in samples]


@dataclass(frozen=True)
class LabelCodec:
    """
    Frozen label mapping used by one trained model.

    The codec is rebuilt from scratch for every training run and then
    stored with the model; inference always decodes with the stored one.
    """

    labels: Tuple[str, ...]

    def __post_init__(self):
        if list(self.labels) != sorted(set(self.labels)):
            raise ValueError(f"Codec labels must be distinct and sorted: {list(self.labels)}")

    @classmethod
    def derive(cls, samples: Iterable[Union[Sample, str]]) -> "LabelCodec":
        """
        Build the codec for a sample set.

        Args:
            samples: Samples (or bare label strings)

        Returns:
            LabelCodec, independent of input ordering
        """
        codec = cls(labels=tuple(sorted(set(_labels_of(samples)))))
        logger.debug(f"Derived label mapping: {codec.label_map}")
        return codec

    @classmethod
    def from_mapping(cls, labels: Sequence[str], label_map: Dict[str, int]) -> "LabelCodec":
        """
        Rebuild a stored codec, checking labels and mapping agree.

        Raises:
            ValueError: labels and label_map are inconsistent
        """
        codec = cls(labels=tuple(labels))
        if dict(label_map) != codec.label_map:
            raise ValueError(
                f"Label map {dict(label_map)} does not match labels {list(labels)}"
            )
        return codec

    @property
    def label_map(self) -> Dict[str, int]:
        return {label: index for index, label in enumerate(self.labels)}

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    @property
    def is_single_class(self) -> bool:
        return len(self.labels) == 1

    def encode(self, label: str) -> int:
        try:
            return self.label_map[label]
        except KeyError:
            raise KeyError(f"Unknown label '{label}' (known: {list(self.labels)})") from None

    def encode_all(self, labels: Iterable[str]) -> List[int]:
        mapping = self.label_map
        return [mapping[label] for label in labels]

    def decode(self, index: int) -> str:
        if not 0 <= index < len(self.labels):
            raise IndexError(f"Class index {index} out of range for {len(self.labels)} labels")
        return self.labels[index]

    def derive_counts(self, samples: Iterable[Union[Sample, str]]) -> Dict[str, int]:
        """Per-label sample counts in codec order."""
        counts = pd.Series(_labels_of(samples), dtype="object").value_counts()
        return {label: int(counts.get(label, 0)) for label in self.labels}


def get_label_distribution(samples: Iterable[Union[Sample, str]]) -> Dict:
    """
    Get distribution of labels.

    Args:
        samples: Samples (or bare label strings)

    Returns:
        Dictionary with total, per-label counts and percentages
    """
    labels = pd.Series(_labels_of(samples), dtype="object")
    total = len(labels)
    counts = labels.value_counts().sort_index()

    return {
        "total": total,
        "num_labels": int(counts.size),
        "counts": {label: int(count) for label, count in counts.items()},
        "percentages": {
            label: float(count) / total * 100 if total > 0 else 0.0
            for label, count in counts.items()
        },
    }
