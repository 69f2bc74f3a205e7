"""
Exception types raised by the coin generation pipeline.

Every error carries the HTTP status the handler answers with, so the Flask
error handler can turn it into the JSON failure envelope without a lookup table.
"""


class CoinForgeError(Exception):
    """Base class for all errors surfaced to the caller"""

    status_code = 500
    error = "Image generation failed"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(CoinForgeError):
    status_code = 400
    error = "Description is required"


class RequestParseError(CoinForgeError):
    status_code = 400
    error = "Could not parse request body"


class ConfigurationError(CoinForgeError):
    error = "Image service is not configured"


class UpstreamError(CoinForgeError):
    """The image service failed, returned garbage, or returned nothing"""

    error = "Image generation failed"


class ContentPolicyError(UpstreamError):
    """The image service refused the prompt on content-policy grounds"""

    error = (
        "The image service rejected this request under its content policy. "
        "Try rewording the description or removing the reference images."
    )


class ImageProcessingError(CoinForgeError):
    error = "Could not process generated image"


class ModelExportError(CoinForgeError):
    error = "Could not export 3D model"


class EmptyTraceError(CoinForgeError):
    status_code = 422
    error = "No design outline could be traced from the generated image"
