"""Auth introspection routes: who am I, and what may I do."""

from fastapi import APIRouter, Depends

from tokenledger.auth.dependencies import get_current_user
from tokenledger.auth.rbac import get_permissions_for_role
from tokenledger.schemas.auth import CurrentUser, PermissionMatrixResponse
from tokenledger.schemas.common import ApiResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=ApiResponse[CurrentUser])
async def get_me(current_user: CurrentUser = Depends(get_current_user)):
    return ApiResponse(data=current_user)


@router.get("/permissions", response_model=ApiResponse[PermissionMatrixResponse])
async def get_my_permissions(current_user: CurrentUser = Depends(get_current_user)):
    return ApiResponse(
        data=PermissionMatrixResponse(
            role=current_user.role,
            permissions=get_permissions_for_role(current_user.role),
        )
    )
