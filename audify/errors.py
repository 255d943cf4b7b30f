"""Exception hierarchy for document processing and playback."""

STAGE_LABELS = {
    "uploading": "Upload",
    "ocr": "Text extraction",
    "audio": "Audio generation",
    "saving": "Saving",
}


class AudifyError(Exception):
    """Base class for all errors raised by this package."""


class ProcessingError(AudifyError):
    """A document processing stage failed.

    ``stage`` is one of the keys of STAGE_LABELS so callers can tell the
    user where the pipeline stopped.
    """

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        label = STAGE_LABELS.get(stage, stage)
        super().__init__(f"{label} failed: {message}")


class NoTextFoundError(ProcessingError):
    """OCR produced no usable text."""

    def __init__(self, message: str = "No text found in any of the uploaded images.") -> None:
        super().__init__("ocr", message)


class ProcessingCancelled(ProcessingError):
    """Processing was cancelled by the caller."""

    def __init__(self, stage: str) -> None:
        super().__init__(stage, "cancelled")


class OCRError(AudifyError):
    """The OCR service failed or could not be reached."""


class SynthesisError(AudifyError):
    """The speech synthesis service failed for one chunk."""


class InvariantError(AudifyError):
    """Audio or timestamp data broke a pipeline invariant.

    Indicates misconfigured collaborators, never a transient condition.
    """


class DocumentNotFoundError(AudifyError):
    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' not found.")
