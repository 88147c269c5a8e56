"""
Errors - Exception hierarchy and translation of Gemini API failures.

Only ValidationError and TransportError are meant to reach the user.
The rest are recovered close to where they happen.
"""


class ThumbnailEditorError(Exception):
    """Base class for every error raised by the editor."""


class ValidationError(ThumbnailEditorError):
    """The edit request has nothing to act on."""


class InvalidTransitionError(ThumbnailEditorError):
    """The requested action is not allowed in the current session phase."""


class DecodeError(ThumbnailEditorError):
    """Pixel data could not be read from an encoded image."""


class ExtractionError(ThumbnailEditorError):
    """The optional removed-elements layer could not be produced."""


class PersistenceError(ThumbnailEditorError):
    """A session snapshot could not be saved or loaded."""


class TransportError(ThumbnailEditorError):
    """A call to the generative service failed.

    `kind` is one of the TRANSPORT_MESSAGES keys, or "unknown".
    """

    def __init__(self, message: str, kind: str = "unknown"):
        super().__init__(message)
        self.kind = kind
        self.message = message


# Checked in order; first match wins.
_CLASSIFIERS = [
    ("rate_limit", ("429",)),
    ("permission", ("403",)),
    ("bad_request", ("400",)),
    ("overloaded", ("500", "503", "overloaded")),
    ("safety", ("SAFETY",)),
    ("recitation", ("RECITATION",)),
]

TRANSPORT_MESSAGES = {
    "rate_limit": (
        "Rate limit exceeded. Too many people are using the AI right now. "
        "Please wait 10-20 seconds and try again."
    ),
    "permission": (
        "Permission denied. Please ensure your API key is correctly configured "
        "and has access to the Gemini models."
    ),
    "bad_request": (
        "Invalid request. The image might be too large, corrupted, "
        "or in an unsupported format."
    ),
    "overloaded": (
        "Google's AI servers are temporarily overloaded. "
        "Please try again in a few moments."
    ),
    "safety": (
        "This request was blocked by safety filters. "
        "Ensure your image and instructions follow community guidelines."
    ),
    "recitation": (
        "The model produced content that matched copyrighted material. "
        "Please try a slightly different instruction."
    ),
}


def classify_error(error_text: str) -> str:
    """Return the transport error kind for a raw error message."""
    for kind, needles in _CLASSIFIERS:
        if any(needle in error_text for needle in needles):
            return kind
    return "unknown"


def translate_error(error: BaseException) -> TransportError:
    """Turn any service failure into a TransportError with a readable message."""
    if isinstance(error, TransportError):
        return error
    msg = str(error) or error.__class__.__name__
    kind = classify_error(msg)
    if kind == "unknown":
        short = msg[:100] + "..." if len(msg) > 100 else msg
        return TransportError(f"Error: {short}", kind)
    return TransportError(TRANSPORT_MESSAGES[kind], kind)
