"""
Model Factory Module
====================

Responsibility:
- Name-based construction of scikit-learn estimators and transformers.
- Adapters implementing the model / preprocessing collaborator contracts.
"""

from .model_factory import ModelFactory
from .adapters import SklearnModel, SklearnPreprocessor, IdentityPreprocessor

__all__ = ['ModelFactory', 'SklearnModel', 'SklearnPreprocessor', 'IdentityPreprocessor']
