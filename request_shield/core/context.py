# Request/response contracts shared by every guard: the inbound
# ClientContext, the Continue/Reject result and the JSON error envelope.

from dataclasses import dataclass, field

from pydantic import BaseModel


@dataclass(frozen=True)
class ClientContext:
    ip: str
    method: str
    path: str
    query: str = ""
    headers: dict[str, str] = field(default_factory=dict)  # lower-cased names
    cookies: dict[str, str] = field(default_factory=dict)
    raw_body: bytes = b""

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def url(self) -> str:
        # Path plus query string as the client sent it
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path


@dataclass(frozen=True)
class Continue:
    pass


CONTINUE = Continue()


@dataclass(frozen=True)
class Reject:
    status: int
    code: str
    message: str
    retry_after: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
    clear_cookies: tuple[str, ...] = ()

    def envelope(self) -> dict:
        error = ErrorDetail(code=self.code, message=self.message, retryAfter=self.retry_after)
        return ErrorEnvelope(error=error).model_dump(exclude_none=True)


GuardResult = Continue | Reject


class ErrorDetail(BaseModel):
    code: str
    message: str
    retryAfter: int | None = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: ErrorDetail
