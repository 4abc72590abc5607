class ConfigurationError(ValueError):
    """Raised when a benchmark cannot start because of invalid setup."""
