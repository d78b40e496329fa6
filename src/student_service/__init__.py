"""student-service: student records over a changelog-managed schema."""

__version__ = "0.1.0"

__all__ = ["__version__"]
