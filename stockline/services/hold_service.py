"""Held documents - park an unsaved draft and bring it back later."""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from stockline.models import HeldDocument
from stockline.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return {"__decimal__": str(obj)}
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _object_hook(dct: Dict[str, Any]) -> Any:
    if "__decimal__" in dct:
        return Decimal(dct["__decimal__"])
    return dct


def _encode(value: Any) -> Any:
    """JSON-column safe copy; Decimals survive as {"__decimal__": str}."""
    return json.loads(json.dumps(value, default=_default))


def _decode(value: Any) -> Any:
    return json.loads(json.dumps(value), object_hook=_object_hook)


def hold(db: Session, company_id: int, entry_session, label: str = None) -> HeldDocument:
    """
    Park the session's draft and clear the session.

    Saved documents cannot be held, and neither can a draft without any
    product.
    """
    if entry_session.is_saved:
        raise ValidationError('Cannot hold a saved document')

    draft = entry_session.draft()
    if not draft['lines']:
        raise ValidationError('Nothing to hold, add at least one product first')

    totals = entry_session.totals()
    held = HeldDocument(
        company_id=company_id,
        kind=entry_session.kind,
        label=label,
        item_count=len(draft['lines']),
        grand_total=totals['grand_total'],
        payload=_encode(draft),
    )
    db.add(held)
    db.commit()

    logger.info(f"[HOLD] Held {held.kind.value} #{held.id} ({held.item_count} items, total {held.grand_total})")
    entry_session.clear()
    return held


def list_held(db: Session, company_id: int, kind=None) -> List[HeldDocument]:
    """Held drafts, oldest first."""
    query = db.query(HeldDocument).filter(HeldDocument.company_id == company_id)
    if kind is not None:
        query = query.filter(HeldDocument.kind == kind)
    return query.order_by(HeldDocument.held_at, HeldDocument.id).all()


def _get_held(db: Session, company_id: int, held_id: int) -> HeldDocument:
    held = db.query(HeldDocument).filter(
        HeldDocument.id == held_id,
        HeldDocument.company_id == company_id
    ).first()
    if not held:
        raise NotFoundError(f'Held document {held_id} not found')
    return held


def restore(db: Session, company_id: int, held_id: int, entry_session) -> None:
    """Load a held draft into the session as a new document and drop it from the list."""
    held = _get_held(db, company_id, held_id)
    entry_session.load_draft(_decode(held.payload))
    db.delete(held)
    db.commit()
    logger.info(f"[HOLD] Restored held document #{held_id}")


def delete_held(db: Session, company_id: int, held_id: int) -> None:
    held = _get_held(db, company_id, held_id)
    db.delete(held)
    db.commit()
    logger.info(f"[HOLD] Deleted held document #{held_id}")
