"""Current user endpoint."""

from fastapi import APIRouter, Depends

from kablan.core.auth import RequestUserContext, get_current_user_context

router = APIRouter(prefix="/me", tags=["me"])


@router.get("")
def get_me(context: RequestUserContext = Depends(get_current_user_context)) -> dict[str, object]:
    """Return the acting user, its permissions and limits."""

    return {
        "id": context.user_id,
        "username": context.username,
        "full_name": context.full_name,
        "role": context.role.value,
        "organization_id": context.organization_id,
        "impersonator_id": context.impersonator_id,
        "permissions": sorted(context.permissions),
        "custom_limits": context.limits.to_response(),
    }
