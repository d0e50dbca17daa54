from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleet_rollout.core.errors import RolloutError


def to_http_exception(exc: RolloutError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


def conflict_from_integrity(db: Session, exc: IntegrityError, *, label: str) -> HTTPException:
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"{label} conflict: {exc.orig}",
    )
