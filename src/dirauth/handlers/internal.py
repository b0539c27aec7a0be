"""Handlers for internal routes not exposed outside the cluster."""

from fastapi import APIRouter
from safir.metadata import Metadata, get_metadata
from safir.slack.webhook import SlackRouteErrorHandler

router = APIRouter(route_class=SlackRouteErrorHandler)

__all__ = ["router"]


@router.get(
    "/",
    description=(
        "Return metadata about the running application. This route is not"
        " exposed outside the cluster and therefore cannot be used by"
        " external clients."
    ),
    response_model=Metadata,
    response_model_exclude_none=True,
    summary="Application metadata",
    tags=["internal"],
)
async def get_index() -> Metadata:
    return get_metadata(package_name="dirauth", application_name="dirauth")
