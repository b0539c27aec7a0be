"""FastAPI dependency for extracting login credentials from a request.

Credentials may be sent as a form body, as a JSON body, or as query
parameters. The names of the username and password fields are configurable.
A field in the body takes precedence over a query parameter of the same name.
"""

from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, Request

from ..exceptions import InvalidCredentialsError
from .context import RequestContext, context_dependency

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")
"""Content types parsed as form bodies."""

__all__ = ["Credentials", "credentials_dependency"]


@dataclass(frozen=True, slots=True)
class Credentials:
    """Username and password sent by the client."""

    username: str | None
    """Username, or `None` if it was not sent."""

    password: str | None
    """Password, or `None` if it was not sent."""


async def _read_body(request: Request) -> dict[str, Any]:
    """Parse the request body into a mapping of fields."""
    content_type = request.headers.get("Content-Type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            body = await request.json()
        except ValueError as e:
            msg = "Request body is not valid JSON"
            raise InvalidCredentialsError(msg) from e
        return body if isinstance(body, dict) else {}
    if media_type in _FORM_TYPES:
        form = await request.form()
        return dict(form)
    return {}


async def credentials_dependency(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> Credentials:
    """Extract the username and password from the request.

    Parameters
    ----------
    context
        Context of the incoming request.

    Returns
    -------
    Credentials
        The credentials. A field that is missing or empty in the body is
        taken from the query string. Fields found in neither, or present
        with a value that is not a string, are `None`.
    """
    body = await _read_body(context.request)
    query = context.request.query_params

    def find(field: str) -> str | None:
        value = body.get(field)
        if not value:
            value = query.get(field)
        return value if isinstance(value, str) else None

    username = find(context.config.username_field)
    context.rebind_logger(user=username)
    return Credentials(
        username=username, password=find(context.config.password_field)
    )
