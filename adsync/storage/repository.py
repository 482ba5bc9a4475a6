"""ADSYNC — Store Access.

Idempotent upserts keyed on external ids, plus the cached reads the HTTP
layer serves while a refresh runs in the background.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlmodel import Session, SQLModel, func, select

from adsync.models.sync_models import (
    MetaAccountInsights,
    MetaAd,
    MetaAdSet,
    MetaApiPing,
    MetaCampaign,
    MetaDailyMetrics,
    MetaSyncLog,
)

ModelT = TypeVar("ModelT", bound=SQLModel)

# Never overwritten by an upsert
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def upsert(
    session: Session,
    model: Type[ModelT],
    key: Dict[str, Any],
    values: Dict[str, Any],
) -> Tuple[ModelT, bool]:
    """Insert-or-update the row identified by ``key``. Last writer wins.

    Returns ``(row, created)``. The caller owns the commit so a parent row can
    be committed before its children are fetched.
    """
    query = select(model)
    for column, value in key.items():
        query = query.where(getattr(model, column) == value)
    existing = session.exec(query).first()

    now = datetime.now(timezone.utc)
    stamps = {
        name: now
        for name in ("last_updated", "updated_at")
        if name in model.model_fields
    }

    if existing:
        for column, value in {**values, **stamps}.items():
            if column not in IMMUTABLE_FIELDS:
                setattr(existing, column, value)
        session.add(existing)
        return existing, False

    row = model(**{**values, **stamps, **key})
    session.add(row)
    return row, True


# ── Cached Reads ──


def get_account(session: Session, account_id: str) -> Optional[MetaAccountInsights]:
    return session.exec(
        select(MetaAccountInsights).where(MetaAccountInsights.account_id == account_id)
    ).first()


def list_account_ids(session: Session) -> List[str]:
    """Every account that has ever been mirrored."""
    return list(
        session.exec(
            select(MetaAccountInsights.account_id).order_by(MetaAccountInsights.id)
        ).all()
    )


def cached_campaigns(session: Session, account_id: str) -> List[MetaCampaign]:
    return list(
        session.exec(
            select(MetaCampaign)
            .where(MetaCampaign.account_id == account_id)
            .order_by(MetaCampaign.id)
        ).all()
    )


def daily_metrics_for(
    session: Session, day: str, account_ids: Sequence[str]
) -> List[MetaDailyMetrics]:
    if not account_ids:
        return []
    return list(
        session.exec(
            select(MetaDailyMetrics).where(
                MetaDailyMetrics.date == day,
                MetaDailyMetrics.account_id.in_(list(account_ids)),  # type: ignore
            )
        ).all()
    )


def structure_counts(session: Session) -> Dict[str, int]:
    """Row counts of the mirrored hierarchy below account level."""
    return {
        "campaigns": session.exec(select(func.count()).select_from(MetaCampaign)).one(),
        "ad_sets": session.exec(select(func.count()).select_from(MetaAdSet)).one(),
        "ads": session.exec(select(func.count()).select_from(MetaAd)).one(),
    }


def latest_campaign_update(session: Session) -> Optional[datetime]:
    return session.exec(select(func.max(MetaCampaign.last_updated))).one()


def recent_sync_logs(
    session: Session, limit: int = 20, sync_type: Optional[str] = None
) -> List[MetaSyncLog]:
    query = select(MetaSyncLog).order_by(MetaSyncLog.completed_at.desc())  # type: ignore
    if sync_type:
        query = query.where(MetaSyncLog.sync_type == sync_type)
    return list(session.exec(query.limit(limit)).all())


def recent_pings(session: Session, limit: int = 50) -> List[MetaApiPing]:
    query = select(MetaApiPing).order_by(
        MetaApiPing.timestamp.desc(), MetaApiPing.id.desc()  # type: ignore
    )
    return list(session.exec(query.limit(limit)).all())
