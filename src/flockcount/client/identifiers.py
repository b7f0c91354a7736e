"""Tagged count identifiers.

A count is identified either by a client-generated local id (records created
while offline or in guest mode) or by the server's integer id. The two kinds
never compare equal, so a local "42" and server record 42 are distinct.

Wire values are converted only in `parse_count_id`; the reverse direction
only in `CountId.wire`.
"""

from dataclasses import dataclass
from typing import Annotated, Any, Union
from uuid import uuid4

from pydantic import PlainSerializer, PlainValidator


@dataclass(frozen=True)
class LocalId:
    """Client-generated identifier (uuid4 string)."""

    value: str

    @classmethod
    def new(cls) -> "LocalId":
        return cls(str(uuid4()))

    @property
    def wire(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RemoteId:
    """Server-assigned integer identifier."""

    value: int

    @property
    def wire(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


CountId = Union[LocalId, RemoteId]


def parse_count_id(value: Any) -> CountId:
    """Convert a wire value (or an already tagged id) into a CountId.

    Integers and all-digit strings are server ids; any other non-empty
    string is a local id.

    Raises:
        ValueError: If the value is empty, boolean or of an unsupported type
    """
    if isinstance(value, (LocalId, RemoteId)):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid count id: {value!r}")
    if isinstance(value, int):
        return RemoteId(value)
    if isinstance(value, str) and value:
        if value.isascii() and value.isdigit():
            return RemoteId(int(value))
        return LocalId(value)
    raise ValueError(f"Invalid count id: {value!r}")


# Field type for pydantic models that carry a count id on the wire
WireCountId = Annotated[
    Union[LocalId, RemoteId],
    PlainValidator(parse_count_id),
    PlainSerializer(lambda count_id: count_id.wire),
]
