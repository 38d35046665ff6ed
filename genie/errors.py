class GenieError(RuntimeError):
    """Base class for every error raised by the decoder port."""


class ConfigurationError(GenieError):
    """Weights manifest, binary payload or trace is missing or malformed."""


LoadError = ConfigurationError


class MissingParameterError(ConfigurationError):
    """A parameter name was looked up that the manifest does not declare."""


class ShapeMismatchError(GenieError):
    """A parameter or input tensor does not have the expected shape."""


class UsageError(GenieError):
    """A component was used incorrectly (after dispose, bad index, ...)."""


class ParityFailure(AssertionError):
    """Replaying a golden trace diverged from the recorded logits."""
