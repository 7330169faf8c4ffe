from fastapi import APIRouter

from navigapp.core.modules.user.models import UserView
from navigapp.web.deps import CurrentUserDep
from navigapp.web.openapi import ApiResponse, ErrorResponse

router = APIRouter(tags=["profile"])


@router.get(
    "/profile",
    summary="Get current user profile",
    description="Get the profile of the currently authenticated user.",
    operation_id="getCurrentUserProfile",
    responses={
        200: {"description": "Current user profile"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def get_profile(user: CurrentUserDep) -> ApiResponse[UserView]:
    return ApiResponse(data=UserView.from_domain(user))
