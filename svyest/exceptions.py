"""
Exception hierarchy for svyest

Every error raised by the package derives from SurveyError, which is a
ValueError so that callers catching ValueError keep working. Errors carry
the offending column, stratum or variable name as attributes.
"""

from typing import Any, Dict, Optional


class SurveyError(ValueError):
    """
    Base exception for all svyest errors

    Attributes
    ----------
    variable : str or None
        Variable being estimated when the error occurred
    domain : dict or None
        Domain (by-variable name to value) being estimated
    """
    variable = None
    domain = None

    def add_context(self, variable: Optional[str] = None,
                    domain: Optional[Dict[str, Any]] = None) -> 'SurveyError':
        """Record the variable or domain being estimated and prefix the message"""
        context = []
        if variable is not None:
            self.variable = variable
            context.append(f"variable '{variable}'")
        if domain is not None:
            self.domain = domain
            context.append(f"domain {domain}")
        if context and self.args:
            self.args = (f"[{', '.join(context)}] {self.args[0]}",) + self.args[1:]
        return self


class DimensionMismatch(SurveyError):
    """
    A design-metadata vector does not have one entry per sampled unit

    Attributes
    ----------
    name : str
        Argument or column name of the offending vector
    expected : int
        Number of rows in the unit table
    actual : int
        Length of the supplied vector
    """

    def __init__(self, name: str, expected: int, actual: int):
        super().__init__(
            f"'{name}' has length {actual}, expected {expected} (one entry per unit)"
        )
        self.name = name
        self.expected = expected
        self.actual = actual


class InvalidDesignSpecification(SurveyError):
    """
    Design metadata is missing or contradictory

    Attributes
    ----------
    name : str or None
        Column or argument the problem was found in
    """

    def __init__(self, message: str, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class InsufficientSampleSize(SurveyError):
    """
    Too few sampled units (or PSUs) for the requested variance formula

    Attributes
    ----------
    stratum : object
        Stratum label where the shortage occurred (None for unstratified)
    sampsize : int
        Number of units or PSUs actually available
    required : int
        Minimum number needed
    """

    def __init__(self, message: str, stratum: Any = None,
                 sampsize: Optional[int] = None, required: int = 2):
        super().__init__(message)
        self.stratum = stratum
        self.sampsize = sampsize
        self.required = required


class InvalidReplicateCount(SurveyError):
    """Fewer than two replicates were requested or are usable"""

    def __init__(self, replicates: int):
        super().__init__(
            f"At least 2 replicates are required, got {replicates}"
        )
        self.replicates = replicates


class UnsupportedVariableType(SurveyError):
    """
    A variable's values have no estimator defined for them

    Attributes
    ----------
    variable : str
        Variable name
    dtype : str
        dtype found in the unit table
    """

    def __init__(self, variable: str, dtype: Any, expected: str):
        super().__init__(
            f"Variable '{variable}' has dtype {dtype}; expected {expected}"
        )
        self.variable = variable
        self.dtype = str(dtype)


class MissingValueError(SurveyError):
    """A variable or domain column contains missing values"""

    def __init__(self, variable: str, n_missing: int):
        super().__init__(
            f"Variable '{variable}' has {n_missing} missing value(s); "
            f"drop or impute them before building the estimate"
        )
        self.variable = variable
        self.n_missing = n_missing
