"""Exception types raised across the room workflow pipeline."""


class CapabilityError(RuntimeError):
    """A remote AI capability failed or returned an unusable result."""


class ImageDecodeError(ValueError):
    """Uploaded bytes could not be decoded as an image."""


class StageBusyError(RuntimeError):
    """A stage was invoked while its busy flag was already set."""

    def __init__(self, stage):
        self.stage = stage
        super().__init__(f"Stage {stage.value} is already running for this session")


class ConfirmationPendingError(RuntimeError):
    """A confirmation was requested while another one is still unanswered."""
