"""Custom exceptions for the web API."""


class StudentServiceAPIException(Exception):
    """Base exception for the student-service API."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ServiceUnavailableError(StudentServiceAPIException):
    """Raised when the database behind an endpoint cannot be reached."""

    def __init__(self, message: str = "Student storage is unavailable"):
        super().__init__(message, 503)


class SchemaNotReadyError(StudentServiceAPIException):
    """Raised when a request arrives before migrations have completed."""

    def __init__(self) -> None:
        super().__init__("Database schema is not ready", 503)
