from fastapi import APIRouter, Depends, status

from tile_inventory.auth import UserContext, get_current_user, sessions
from tile_inventory.logging_config import get_child_logger

logger = get_child_logger("routes.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=UserContext)
async def get_me(user: UserContext = Depends(get_current_user)):
    sessions.sign_in(user)
    return user


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(user: UserContext = Depends(get_current_user)):
    """
    End the server-side session: any live list view of the user stops
    before the identity provider revokes the credentials.
    """
    sessions.sign_out(user.user_id)
    logger.info("Logout handled", extra={"user_id": user.user_id})
