"""
Parameter Space Module
======================

Responsibility:
- Declare tunable parameters (continuous, integer, categorical).
- Resolve data-dependent bounds (e.g. number of predictors) before grid generation.
- Map unit-hypercube design points onto concrete parameter values.
"""

from .parameter_space import (
    Parameter,
    Continuous,
    Integer,
    Categorical,
    ParameterSpace,
    parameter_from_dict,
)

__all__ = [
    'Parameter',
    'Continuous',
    'Integer',
    'Categorical',
    'ParameterSpace',
    'parameter_from_dict',
]
