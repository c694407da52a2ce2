from collections.abc import Generator

from sqlalchemy.orm import Session

from stockledger.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        # Uncommitted ledger writes from a failed operation must never leak into the next request.
        db.rollback()
        raise
    finally:
        db.close()
