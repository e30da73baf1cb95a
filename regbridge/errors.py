"""Error taxonomy for the registry protocol.

Every error raised by the protocol machinery derives from ``RegistryError``
and knows how to render itself as an RFC 9457 problem document. The HTTP
layer only has to call ``to_problem()`` and use ``status``.
"""

from __future__ import annotations

from typing import Any

ERROR_TYPE_BASE = "https://github.com/xregistry/spec/blob/main/core/spec.md"


class RegistryError(Exception):
    """Base class for every error the protocol reports to clients."""

    status: int = 500
    code: str = "server_error"
    title: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str = "",
        *,
        instance: str = "",
        title: str = "",
        **extensions: Any,
    ):
        super().__init__(detail or title or self.title)
        self.detail = detail
        self.instance = instance
        if title:
            self.title = title
        self.extensions = extensions

    @property
    def type_url(self) -> str:
        return f"{ERROR_TYPE_BASE}#{self.code}"

    def to_problem(self, instance: str = "") -> dict[str, Any]:
        """Render the error as a problem document."""
        problem: dict[str, Any] = {
            "type": self.type_url,
            "title": self.title,
            "status": self.status,
            "instance": self.instance or instance,
        }
        if self.detail:
            problem["detail"] = self.detail
        problem.update(self.extensions)
        return problem


class InvalidRequest(RegistryError):
    status = 400
    code = "invalid_data"
    title = "The request cannot be processed as provided"


class InvalidIdentifier(InvalidRequest):
    code = "malformed_id"
    title = "The specified entity identifier is malformed"


class Unauthorized(RegistryError):
    status = 401
    code = "unauthorized"
    title = "Authentication is required to access this resource"


class NotAcceptable(RegistryError):
    status = 406
    code = "not_acceptable"
    title = "The requested media type is not supported"


class EntityNotFound(RegistryError):
    status = 404
    code = "not_found"
    title = "The specified entity cannot be found"

    @classmethod
    def for_entity(cls, kind: str, entity_id: str, instance: str = "") -> "EntityNotFound":
        return cls(
            f"The {kind} '{entity_id}' cannot be found",
            instance=instance,
            title=f"The specified {kind} cannot be found",
        )


class ApiNotFound(RegistryError):
    status = 404
    code = "api_not_found"
    title = "The specified API is not supported"


class UpstreamUnavailable(RegistryError):
    """The upstream registry (or a downstream adapter) could not be reached.

    A timeout is reported as 504, every other transport failure as 502.
    """

    status = 502
    code = "upstream_unavailable"
    title = "The upstream service is unavailable"

    def __init__(self, detail: str = "", *, timeout: bool = False, **kwargs: Any):
        super().__init__(detail, **kwargs)
        self.timeout = timeout
        if timeout:
            self.status = 504
            self.title = "The upstream service did not respond in time"


class ServerError(RegistryError):
    status = 500
    code = "server_error"
    title = "An unexpected error occurred"
