from sqlmodel import Session, select
from typing import Optional

from ..core.clock import utcnow
from ..models.Audit import AuditLog, AuditChainStatus, GENESIS_HASH

def log_event(db: Session, actor_id: Optional[int], action: str, subject: str = "", details: Optional[str] = None) -> AuditLog:
    """
    Appends a new event to the AuditLog chain.
    """
    last_entry = db.exec(select(AuditLog).order_by(AuditLog.id.desc())).first()
    previous_hash = last_entry.current_hash if last_entry else GENESIS_HASH

    new_log = AuditLog(
        actor_id=actor_id or 0,
        action=action,
        subject=subject,
        details=details or "",
        previous_hash=previous_hash,
        current_hash="", # Placeholder, will be calculated
        timestamp=utcnow()
    )
    new_log.current_hash = new_log.calculate_hash()

    db.add(new_log)
    db.commit()
    db.refresh(new_log)

    return new_log

def list_events(db: Session, limit: int = 100, offset: int = 0) -> list[AuditLog]:
    statement = select(AuditLog).order_by(AuditLog.id.asc()).offset(offset).limit(limit)
    return list(db.exec(statement).all())

def verify_chain(db: Session) -> AuditChainStatus:
    """
    Walks the chain in insertion order and reports the first entry whose links do not hold.
    """
    entries = db.exec(select(AuditLog).order_by(AuditLog.id.asc())).all()
    previous_hash = GENESIS_HASH
    for entry in entries:
        if entry.previous_hash != previous_hash or entry.calculate_hash() != entry.current_hash:
            return AuditChainStatus(entries=len(entries), valid=False, first_broken_id=entry.id)
        previous_hash = entry.current_hash
    return AuditChainStatus(entries=len(entries), valid=True)
