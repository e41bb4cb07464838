from typing import Dict, Mapping, Optional, Set, Tuple

from fastapi import HTTPException, Request, status
from pydantic import BaseModel, ConfigDict

from tile_inventory.logging_config import get_child_logger
from tile_inventory.subscriptions import ListenerRegistry

logger = get_child_logger("auth")

# Injected by Azure App Service authentication in front of the function app
PRINCIPAL_ID_HEADER = "x-ms-client-principal-id"
PRINCIPAL_NAME_HEADER = "x-ms-client-principal-name"


class UserContext(BaseModel):
    user_id: str
    name: Optional[str] = None

    model_config = ConfigDict(frozen=True)


def principal_from_headers(headers: Mapping[str, str]) -> Optional[UserContext]:
    user_id = headers.get(PRINCIPAL_ID_HEADER)
    if not user_id:
        return None
    return UserContext(user_id=user_id, name=headers.get(PRINCIPAL_NAME_HEADER))


class AuthSession:
    """
    Sign-in state of one user and the live query registries of that user's
    open list views. Each view owns its own registry; sign-out force-clears
    all of them.
    """

    def __init__(self):
        self._registries: Set[ListenerRegistry] = set()
        self._user: Optional[UserContext] = None

    @property
    def user(self) -> Optional[UserContext]:
        return self._user

    @property
    def is_signed_in(self) -> bool:
        return self._user is not None

    @property
    def registries(self) -> Tuple[ListenerRegistry, ...]:
        return tuple(self._registries)

    def open_registry(self) -> ListenerRegistry:
        registry = ListenerRegistry()
        self._registries.add(registry)
        return registry

    def release_registry(self, registry: ListenerRegistry) -> None:
        registry.force_clear()
        self._registries.discard(registry)

    def sign_in(self, user: UserContext) -> None:
        self._user = user

    def sign_out(self) -> None:
        # Stop every open live query before the credentials go away
        for registry in self.registries:
            registry.force_clear()
        if self._user is not None:
            logger.info(
                "User signed out",
                extra={"user_id": self._user.user_id, "views": len(self._registries)},
            )
        self._user = None


class SessionStore:
    def __init__(self):
        self._sessions: Dict[str, AuthSession] = {}

    def get(self, user_id: str) -> Optional[AuthSession]:
        return self._sessions.get(user_id)

    def sign_in(self, user: UserContext) -> AuthSession:
        session = self._sessions.get(user.user_id)
        if session is None:
            session = self._sessions[user.user_id] = AuthSession()
        if not session.is_signed_in:
            session.sign_in(user)
        return session

    def sign_out(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.sign_out()

    def clear(self) -> None:
        for user_id in list(self._sessions):
            self.sign_out(user_id)


sessions = SessionStore()


async def get_current_user(request: Request) -> UserContext:
    user = principal_from_headers(request.headers)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return user


async def get_session(request: Request) -> AuthSession:
    return sessions.sign_in(await get_current_user(request))
