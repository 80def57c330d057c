"""
Result values exchanged between pipeline stages.

Stages never throw domain failures across their boundary. They return either
'Ok(value)' or 'Failure(error, stage)' so the orchestrator can apply its
fatal/non-fatal table with a plain 'match' statement.

'Parsed' / 'Malformed' play the same role at the edge where loosely typed payloads
from the chat store or the document index are coerced into the data model.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from local_chat_toolkit.utils.errors import ErrorKind, PipelineError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    error: PipelineError
    stage: str = ""

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def reason(self) -> str:
        return str(self.error)


Result = Ok[T] | Failure


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Malformed:
    reason: str


ParseResult = Parsed[T] | Malformed


def parse_payload(model: type[M], payload: Any) -> "Parsed[M] | Malformed":
    """Validate a raw payload against 'model' without raising."""
    if payload is None:
        return Malformed(f"expected {model.__name__} payload, got nothing")
    if isinstance(payload, model):
        return Parsed(payload)
    try:
        return Parsed(model.model_validate(payload))
    except PydanticValidationError as exc:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        return Malformed(f"invalid {model.__name__} payload: {problems}")
