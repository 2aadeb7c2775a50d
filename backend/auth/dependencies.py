from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from backend.auth import jwt_handler
from backend.database import SessionLocal
from backend.models.user import ADMIN_ROLE, COMPANY_ROLE, User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    # Own short-lived session: the request session must not hold an open
    # transaction before a booking takes its slot lock.
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if user.role not in (ADMIN_ROLE, COMPANY_ROLE):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown user role")
    if user.role == COMPANY_ROLE and not user.company_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Company account has no company assigned")
    return user


def require_clinic_staff(user: User = Depends(get_current_user)) -> User:
    if not user.is_clinic_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only clinic staff can perform this action.")
    return user
