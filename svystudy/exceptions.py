"""Exceptions raised by the study pipeline stages."""


class StudyError(Exception):
    """Base class for pipeline errors."""


class DataFormatError(StudyError):
    """Input file cannot be read or lacks required columns."""


class ImputationError(StudyError):
    """Imputation failed or did not converge within its iteration bound."""


class DesignConfigError(StudyError):
    """Survey design variables are absent, missing or invalid."""


class ModelFitError(StudyError):
    """A survey-weighted model could not be fitted."""
