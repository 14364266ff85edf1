"""
decoder errors
"""


class ConfigurationError(ValueError):
    """Raised when the decoder is driven outside its contract (bad shapes, bad n, no reset)."""
