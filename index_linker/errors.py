"""
Exceptions raised by the rasterize / detect / export pipeline.
The API layer maps them onto HTTP errors.
"""


class IndexLinkerError(Exception):
    """Base class for all pipeline errors"""
    pass


class MissingCredentialsError(IndexLinkerError):
    """No API key configured for the detection service"""
    pass


class DetectionError(IndexLinkerError):
    """The detection service call failed (transport, HTTP status or payload)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RasterizationError(IndexLinkerError):
    """The source document could not be opened for rendering"""
    pass


class PageOutOfRangeError(IndexLinkerError):
    """A 1-based page number outside the document"""

    def __init__(self, page_number: int, page_count: int):
        super().__init__(f"Page {page_number} is outside 1..{page_count}")
        self.page_number = page_number
        self.page_count = page_count
