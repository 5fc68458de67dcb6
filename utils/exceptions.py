"""
Custom exception hierarchy for the Workflow Racing Pipeline.
"""

class RacingException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(RacingException):
    """Configuration validation failed or a parameter bound could not be resolved."""
    pass

class FitError(RacingException):
    """A single (candidate, fold) fit or prediction failed."""
    pass

class StatisticalTestError(RacingException):
    """An interim comparison could not be computed (degenerate variance, too few paired folds)."""
    pass

class WorkflowFailure(RacingException):
    """Evaluation of one workflow could not be completed."""
    pass

class UnknownWorkflowIdError(RacingException, KeyError):
    """The requested workflow id is not part of the set."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""

class DuplicateWorkflowIdError(RacingException):
    """Two workflows share an id and no disambiguation rule was requested."""
    pass

class ResultStoreError(RacingException):
    """Illegal write to the score table (duplicate key or frozen store)."""
    pass
