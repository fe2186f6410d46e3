"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class ImgCacheError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(ImgCacheError):
    """Raised for an invalid cache directory or invalid configuration values."""


class InvalidIntervalError(ConfigurationError, ValueError):
    """Raised when a periodic cleanup interval is below the allowed minimum."""


class DownloadError(ImgCacheError):
    """Raised when a resource could not be downloaded after all attempts."""


class DecodeError(ImgCacheError):
    """Raised when downloaded or cached bytes are not a decodable image."""


class PurgeError(ImgCacheError):
    """
    Raised when a purge payload is malformed or its directory is no longer usable.
    """
