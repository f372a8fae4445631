"""File extension and MIME type resolution for archived conversation audio."""

DEFAULT_EXTENSION = "mp3"
DEFAULT_MIME_TYPE = "audio/mpeg"

MIME_TYPE_EXTENSIONS: dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/x-wav": "wav",
    "audio/wav": "wav",
    "audio/vnd.wave": "wav",
    "audio/mp4": "m4a",
    "audio/m4a": "m4a",
}

# Checked in order; the first hint contained in the agent format wins.
FORMAT_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("wav", "pcm"), "wav"),
    (("webm",), "webm"),
    (("ogg",), "ogg"),
    (("mp4", "m4a"), "m4a"),
    (("mp3",), "mp3"),
]

EXTENSION_MIME_TYPES: dict[str, str] = {
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
}


def extension_from_mime_type(mime_type: str) -> str | None:
    """Map a MIME type (parameters ignored, case-insensitive) to a known extension."""
    base = mime_type.split(";", 1)[0].strip().lower()
    return MIME_TYPE_EXTENSIONS.get(base)


def preferred_file_extension(mime_type: str | None, agent_format: str | None = None) -> str:
    """Pick the extension for archived audio.

    The MIME type wins when it is recognised, then substring hints from the
    agent's output format (e.g. ``pcm_16000``), then ``mp3``.
    """
    if mime_type:
        ext = extension_from_mime_type(mime_type)
        if ext:
            return ext

    if not agent_format:
        return DEFAULT_EXTENSION

    normalized = agent_format.lower()
    for hints, ext in FORMAT_HINTS:
        if any(hint in normalized for hint in hints):
            return ext
    return DEFAULT_EXTENSION


def default_mime_type(extension: str) -> str:
    """Derive a MIME type from a file extension."""
    return EXTENSION_MIME_TYPES.get(extension.lower(), DEFAULT_MIME_TYPE)


def resolve_audio_format(
    mime_type: str | None, agent_format: str | None = None
) -> tuple[str, str]:
    """Return ``(extension, mime_type)`` for a downloaded recording.

    A MIME type reported by the provider is kept as-is, even when it is not
    one we map; only an absent MIME type is derived from the extension.
    """
    extension = preferred_file_extension(mime_type, agent_format)
    return extension, mime_type or default_mime_type(extension)
