"""Username and password login handler (``/login``)."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from safir.models import ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..dependencies.credentials import Credentials, credentials_dependency
from ..exceptions import DirectoryError, InvalidCredentialsError
from ..models.profile import UserProfile

router = APIRouter(route_class=SlackRouteErrorHandler)

__all__ = ["router"]


@router.post(
    "/login",
    description=(
        "Check a username and password against the LDAP directory and return"
        " the profile of the user if they match. The credentials may be sent"
        " as a form body, a JSON body, or query parameters."
    ),
    response_model=UserProfile,
    responses={
        401: {"description": "Invalid credentials", "model": ErrorModel},
        503: {"description": "Directory unavailable", "model": ErrorModel},
    },
    summary="Authenticate user",
    tags=["user"],
)
async def post_login(
    *,
    credentials: Annotated[Credentials, Depends(credentials_dependency)],
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> UserProfile:
    authenticator = context.factory.create_authenticator()
    try:
        profile = await authenticator.authenticate(
            credentials.username, credentials.password
        )
    except DirectoryError as e:
        context.logger.error("Directory authentication failed", error=str(e))
        slack_client = context.factory.create_slack_client()
        if slack_client:
            await slack_client.post_exception(e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=[
                {"msg": "Directory unavailable", "type": "directory_error"}
            ],
        ) from e
    if not profile:
        context.logger.info("Invalid username or password")
        raise InvalidCredentialsError("Invalid username or password")
    user_profile = UserProfile.from_directory(profile)
    context.logger.info("Authenticated user", dn=profile["dn"])
    return user_profile
