import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.clock import Clock, get_clock
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.redemption_ledger import RedemptionLedger

logger = structlog.get_logger()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """Get current authenticated user from cookie or bearer token."""
    token = None

    if request.cookies.get("access_token"):
        token = request.cookies.get("access_token")
    elif request.headers.get("Authorization"):
        auth_header = request.headers.get("Authorization")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_token(token)
    user_id = payload.get("sub")

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return user


def require_instructor(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role not in (UserRole.INSTRUCTOR, UserRole.ADMIN):
        logger.warning(
            "instructor_access_denied",
            action=f"{request.method} {request.url.path}",
            user_id=current_user.id,
        )
        raise HTTPException(
            status_code=403,
            detail="Instructor access required",
        )
    return current_user


def get_ledger(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> RedemptionLedger:
    return RedemptionLedger(db, clock=clock)
