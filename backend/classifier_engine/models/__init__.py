"""
Classifier model training and inference module.

Provides the network, training, artifact persistence, the model catalog,
and gated real-time prediction.
"""

from .model_catalog import CatalogEntry, ModelCatalog
from .model_store import ModelStore
from .model_trainer import ClassifierTrainer, TrainingResult
from .network import FeedForwardClassifier, NetworkConfig, network_from_bytes, network_to_bytes
from .predictor import EngineState, InferenceEngine, Prediction

__all__ = [
    "CatalogEntry",
    "ClassifierTrainer",
    "EngineState",
    "FeedForwardClassifier",
    "InferenceEngine",
    "ModelCatalog",
    "ModelStore",
    "NetworkConfig",
    "Prediction",
    "TrainingResult",
    "network_from_bytes",
    "network_to_bytes",
]
