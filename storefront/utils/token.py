from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from storefront.config import settings

# tokens come from the hosted auth provider, tokenUrl is only for the docs UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class CurrentActor(BaseModel):
    id: str
    email: Optional[str] = None
    role: str = "authenticated"

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


def decode_access_token(token: str):
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_aud": False},
        )
        return payload
    except JWTError:
        return None


def _role_claim(payload: dict) -> Optional[str]:
    # app_metadata is server-controlled; user_metadata is editable by the user, never trusted
    app_metadata = payload.get("app_metadata")
    if isinstance(app_metadata, dict) and app_metadata.get("role"):
        return app_metadata["role"]
    return payload.get("role")


def actor_from_token(token: str) -> Optional[CurrentActor]:
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("sub") or payload.get("user_id")
    if user_id is None:
        return None

    return CurrentActor(
        id=str(user_id),
        email=payload.get("email"),
        role=_role_claim(payload) or "authenticated",
    )


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentActor:
    actor = actor_from_token(token)

    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return actor
