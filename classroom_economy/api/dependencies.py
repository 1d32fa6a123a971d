"""
Request dependencies: the shared economy system and the calling principal.

Authentication happens upstream; the gateway forwards the authenticated
user through the X-User-Id and X-User-Role headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ..system import EconomySystem

ROLES = ("student", "teacher")

_system: Optional[EconomySystem] = None


def get_economy_system() -> EconomySystem:
    """Process-wide system instance, built on first use"""
    global _system
    if _system is None:
        _system = EconomySystem()
    return _system


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Principal:
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity headers")
    role = x_user_role.strip().lower()
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {x_user_role}")
    return Principal(user_id=x_user_id, role=role)


def require_teacher(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_teacher:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teacher role required")
    return principal


def require_student(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.role != "student":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student role required")
    return principal
