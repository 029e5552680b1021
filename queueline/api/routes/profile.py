from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from queueline.dependencies.auth import CurrentUser, User
from queueline.dependencies.tickets import AdminUser

router = APIRouter(tags=["profile"])


class ProfileResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    is_admin: bool

    @classmethod
    def from_user(cls, user: User) -> "ProfileResponse":
        return cls(user_id=user.user_id, is_admin=user.is_admin)


class DashboardResponse(BaseModel):
    message: str
    user: ProfileResponse


@router.get("/profile", response_model=ProfileResponse, summary="Identity resolved from the bearer token")
async def get_profile(user: CurrentUser) -> ProfileResponse:
    return ProfileResponse.from_user(user)


@router.get("/admin/dashboard", response_model=DashboardResponse)
async def get_admin_dashboard(user: AdminUser) -> DashboardResponse:
    return DashboardResponse(message="Welcome to the admin dashboard!", user=ProfileResponse.from_user(user))
