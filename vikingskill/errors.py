"""Exception taxonomy for the skill cache."""


class VikingSkillError(Exception):
    """Base exception for skill cache operations."""

    pass


class TransportError(VikingSkillError):
    """Raised when a network request fails or returns a non-2xx status."""

    pass


class ValidationError(VikingSkillError):
    """Raised when a catalog response does not match the expected schema."""

    pass


class FilesystemError(VikingSkillError):
    """Raised when the cache directory tree cannot be read or written."""

    pass


class NotFoundError(VikingSkillError):
    """Raised when a skill or its primary document is absent."""

    pass
