"""
Classifier studio module.

Exposes the user-facing sample, training, model and prediction operations.
"""

from .studio_service import ClassifierStudio

__all__ = ["ClassifierStudio"]
