from dataclasses import dataclass, field
from typing import Any

from modules.parameter_space import ParameterSpace


@dataclass(frozen=True)
class Workflow:
    """A named pairing of a preprocessor and a trainable model with its parameter space."""
    id: str
    preprocessor: Any
    model: Any
    param_space: ParameterSpace = field(default_factory=ParameterSpace)

    def __post_init__(self):
        if not self.id or not isinstance(self.id, str):
            raise ValueError("Workflow id must be a non-empty string.")

    @property
    def preprocessor_name(self) -> str:
        return getattr(self.preprocessor, 'name', self.preprocessor.__class__.__name__)

    @property
    def model_name(self) -> str:
        return getattr(self.model, 'name', self.model.__class__.__name__)

    def renamed(self, new_id: str) -> "Workflow":
        return Workflow(new_id, self.preprocessor, self.model, self.param_space)
