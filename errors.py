"""Error taxonomy for the image optimizer"""

from typing import Optional


class OptimizerError(Exception):
    """Base class for every failure raised by the optimizer core"""


class AuthorizationError(OptimizerError):
    """Shop credentials are missing or were rejected"""


class CatalogError(OptimizerError):
    """The product catalog query failed"""


class DownloadError(OptimizerError):
    """Fetching the original image bytes failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TranscodeError(OptimizerError):
    """The encode pipeline failed; no partial output exists"""


class UploadError(OptimizerError):
    """The remote mutation was rejected"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(OptimizerError):
    """No record (or no backup URL) exists for the requested asset"""


class CleanupWarning(Warning):
    """Deleting the record under a rotated identifier failed"""
