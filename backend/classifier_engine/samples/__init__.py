"""
Training sample collection.

Provides the persisted sample store and the label codec derived from it.
"""

from .label_codec import LabelCodec, get_label_distribution
from .sample_store import Sample, SampleStore

__all__ = ["Sample", "SampleStore", "LabelCodec", "get_label_distribution"]
