from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status

from ..core.security import ROLE_INSTRUCTOR, ROLE_STUDENT, oauth2_scheme, verify_token


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str
    name: Optional[str] = None

    @property
    def is_instructor(self) -> bool:
        return self.role == ROLE_INSTRUCTOR


def user_from_token(token: Optional[str]) -> Optional[CurrentUser]:
    payload = verify_token(token) if token else None
    if payload is None:
        return None
    return CurrentUser(id=str(payload["sub"]), role=payload["role"], name=payload.get("name"))


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    user = user_from_token(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_student(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if current_user.role != ROLE_STUDENT:
        raise HTTPException(status_code=403, detail="Only students can take quizzes")
    return current_user


def get_current_instructor(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_instructor:
        raise HTTPException(status_code=403, detail="Instructor access required")
    return current_user
