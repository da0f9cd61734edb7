"""
Exceptions raised by the segmentation pipeline.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """Invalid pipeline parameters. Raised before any image is processed."""


class StageError(RuntimeError):
    """
    A pipeline stage could not complete for the current image.

    The batch loop reports ``image`` and ``stage``, discards every region
    of that run and moves on to the next image.
    """

    def __init__(
        self,
        message: str,
        image: Optional[str] = None,
        stage: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.image = image
        self.stage = stage

    def __str__(self) -> str:
        where = []
        if self.image is not None:
            where.append(f"image {self.image}")
        if self.stage is not None:
            where.append(f"stage '{self.stage}'")
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message


class RunCancelled(StageError):
    """The user cancelled a threshold or training dialog."""
