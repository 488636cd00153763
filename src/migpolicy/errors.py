"""Exception types raised by the loader and the mixture fitter."""


class LoadError(Exception):
    """The policy dataset could not be read or decoded."""


class SchemaError(LoadError):
    """A required column is missing or holds values of the wrong type."""


class FitError(Exception):
    """A mixture model could not be fitted for the requested configuration."""
