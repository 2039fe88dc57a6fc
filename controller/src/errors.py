"""
Error types raised by the controller.

Step failures and cancellations are not exceptions: they are recorded on the
Run. Only problems that prevent a Run from being created, or misuse of the
runner, are raised.
"""


class ConfigurationError(Exception):
    """Raised when a pipeline definition is malformed or a trigger is unrecognised."""
    pass


class RunStateError(Exception):
    """Raised when a Run is advanced after reaching a terminal status."""
    pass
