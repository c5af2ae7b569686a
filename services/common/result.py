"""
Result Pattern Implementation
Provides a standardized way for services to return results with success/failure status
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    A generic Result class for component boundaries.

    Encapsulates either a successful result with data or a failure with error
    information. A fallback is a failure that still carries a substituted,
    structurally valid value, so callers can decide per error code whether to
    continue with it.

    Examples:
        result = Result.success(analysis)
        if result.is_success:
            print(result.data)

        result = Result.fallback(default_analysis, "Model unavailable",
                                 code=ErrorKind.LLM_UNAVAILABLE)
        if result.is_failure and result.has_data:
            use(result.data)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[Any] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, data=data, error=None, error_code=None, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[Any] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Error message describing the failure
            code: Error code for programmatic handling (usually an ErrorKind)
            metadata: Optional metadata about the failure
        """
        return cls(success=False, data=None, error=error, error_code=code, metadata=metadata)

    @classmethod
    def fallback(cls,
                 data: T,
                 error: str,
                 code: Optional[Any] = None,
                 metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result that carries a substituted value.

        Args:
            data: Deterministic default used in place of the real result
            error: Error message describing why the default was used
            code: Error code for programmatic handling
            metadata: Optional metadata about the failure
        """
        return cls(success=False, data=data, error=error, error_code=code, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    @property
    def has_data(self) -> bool:
        return self.data is not None

    @property
    def code(self) -> Optional[Any]:
        """Alias for error_code."""
        return self.error_code

    def unwrap(self) -> T:
        """
        Get the data from a successful result.

        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def unwrap_or(self, default: T) -> T:
        """Get the data from a successful result or return default."""
        return self.data if self.is_success else default

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        if self.has_data:
            return f"Result.fallback(data={self.data!r}, error={self.error!r}, code={self.error_code!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
