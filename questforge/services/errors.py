"""Error taxonomy shared by services and mapped to HTTP responses in main.py."""
from __future__ import annotations


class QuestForgeError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class BadRequest(QuestForgeError):
    status_code = 400


class NotAuthenticated(QuestForgeError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Unauthorized(QuestForgeError):
    """Worker callback presented a wrong shared secret."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(QuestForgeError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(QuestForgeError):
    status_code = 404


class JobNotFound(NotFound):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class StorageError(QuestForgeError):
    status_code = 500


class GenerationFailed(QuestForgeError):
    status_code = 502


class GenerationInvalid(GenerationFailed):
    """Provider answered, but with content that must not be persisted."""


class QueuePublishError(QuestForgeError):
    status_code = 502
