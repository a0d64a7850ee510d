"""Profile API routes."""

from fastapi import APIRouter, Depends, File, Request, UploadFile

from api.dependencies.auth import CurrentUser, Synchronizer
from api.v1.dependencies import get_profile_service, get_public_profile_service
from api.v1.schemas.profile import ProfileDetailResponse, ProfileResponse, ProfileUpdate
from core.rate_limit import CREDENTIAL_LIMIT, READ_LIMIT, limiter
from domain.services.profile_service import ProfileService

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get(
    "/me",
    response_model=ProfileDetailResponse,
    summary="Get the signed-in user's profile",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_my_profile(request: Request, user: CurrentUser) -> ProfileDetailResponse:
    """
    Return the profile held in session state.

    This may be a placeholder built from auth metadata if the stored profile
    could not be loaded yet.
    """
    return ProfileDetailResponse(data=ProfileResponse.from_entity(user.profile))


@router.patch(
    "/me",
    response_model=ProfileDetailResponse,
    summary="Edit the signed-in user's profile",
    responses={
        200: {"description": "Profile updated"},
        401: {"description": "Not signed in"},
        409: {"description": "Username already taken"},
    },
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def update_my_profile(
    request: Request,
    body: ProfileUpdate,
    user: CurrentUser,
    synchronizer: Synchronizer,
    profile_service: ProfileService = Depends(get_profile_service),
) -> ProfileDetailResponse:
    """Only provided fields are changed. Session state is refreshed afterwards."""
    profile = await profile_service.update_profile(
        actor_id=user.id,
        user_id=user.id,
        username=body.username,
        full_name=body.full_name,
        bio=body.bio,
        website=str(body.website) if body.website else None,
        location=body.location,
    )
    await synchronizer.refresh()
    return ProfileDetailResponse(data=ProfileResponse.from_entity(profile))


@router.put(
    "/me/avatar",
    response_model=ProfileDetailResponse,
    summary="Upload a new avatar",
    responses={
        200: {"description": "Avatar replaced"},
        400: {"description": "Unsupported type or file too large"},
    },
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def upload_avatar(
    request: Request,
    user: CurrentUser,
    synchronizer: Synchronizer,
    file: UploadFile = File(...),
    profile_service: ProfileService = Depends(get_profile_service),
) -> ProfileDetailResponse:
    """Accepts JPEG, PNG or WebP up to 5MB."""
    data = await file.read()
    profile = await profile_service.update_avatar(
        actor_id=user.id,
        user_id=user.id,
        filename=file.filename or "",
        content_type=file.content_type or "",
        data=data,
    )
    await synchronizer.refresh()
    return ProfileDetailResponse(data=ProfileResponse.from_entity(profile))


@router.delete(
    "/me/avatar",
    response_model=ProfileDetailResponse,
    summary="Remove the avatar",
)
@limiter.limit(CREDENTIAL_LIMIT)  # type: ignore[untyped-decorator]
async def remove_avatar(
    request: Request,
    user: CurrentUser,
    synchronizer: Synchronizer,
    profile_service: ProfileService = Depends(get_profile_service),
) -> ProfileDetailResponse:
    profile = await profile_service.remove_avatar(actor_id=user.id, user_id=user.id)
    await synchronizer.refresh()
    return ProfileDetailResponse(data=ProfileResponse.from_entity(profile))


@router.get(
    "/{user_id}",
    response_model=ProfileDetailResponse,
    summary="Get a public profile",
    responses={404: {"description": "Profile not found"}},
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_profile(
    request: Request,
    user_id: str,
    profile_service: ProfileService = Depends(get_public_profile_service),
) -> ProfileDetailResponse:
    profile = await profile_service.get_by_id(user_id)
    return ProfileDetailResponse(data=ProfileResponse.from_entity(profile))
