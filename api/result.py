"""Tagged result type returned by the API layer."""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from api.errors import RequestError

T = TypeVar('T')


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful request carrying its payload."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed request carrying a terminal RequestError."""
    error: RequestError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
