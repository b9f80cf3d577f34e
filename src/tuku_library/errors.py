"""Exception hierarchy for library ingestion and persistence."""


class LibraryError(Exception):
    """Base class for all tuku_library errors."""


class FilesystemError(LibraryError):
    """The scan root could not be read."""


class UnreadableAudioFileError(LibraryError):
    """A single audio file's tags could not be parsed."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Could not read tags from {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ImageProcessingError(LibraryError):
    """Cover art could not be decoded, resized, encoded or written."""


class PersistenceError(LibraryError):
    """A store transaction failed and was rolled back."""


class ScanInProgressError(LibraryError):
    """A scan was requested while another one is still running."""


class MediaAccessError(LibraryError):
    """A media: URL refers to something the cover handler will not serve."""
