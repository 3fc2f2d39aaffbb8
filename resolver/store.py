"""
Persistence operations shared by the resolution services.

Every write that guards a lifecycle invariant is a conditional UPDATE: it only
matches when the row still holds the expected prior state, so two processes
racing on the same row cannot both win.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from resolver.exceptions import InvalidTransitionError
from resolver.models.base import utcnow
from resolver.models.dispute import Dispute, DisputeStatus
from resolver.models.external_market import ExternalMarket
from resolver.models.market import Market, MarketStatus, MarketType
from resolver.models.scan_checkpoint import ScanCheckpoint
from resolver.models.vote import Vote

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# Markets

def get_or_create_placeholder_market(db: Session, chain_id: int, contract_address: str,
                                     question: str, category: Optional[str],
                                     resolution_time: datetime) -> Market:
    """Parent market for external listings not yet created on-chain (market_id 0)."""
    market = db.query(Market).filter(
        Market.chain_id == chain_id,
        Market.contract_address == contract_address,
        Market.market_id == 0
    ).first()
    if market:
        return market

    market = Market(
        chain_id=chain_id,
        contract_address=contract_address,
        market_id=0,
        question=question,
        category=category,
        market_type=MarketType.PUBLIC.value,
        status=MarketStatus.ACTIVE.value,
        resolution_time=resolution_time,
        total_volume=0.0,
        creator=ZERO_ADDRESS
    )
    db.add(market)
    db.commit()
    db.refresh(market)
    return market


def transition_market_status(db: Session, market: Market, new_status: str,
                             now: Optional[datetime] = None, **fields: Any) -> bool:
    """Move a market one step forward. Returns False if another writer moved it first."""
    current = market.status
    if not MarketStatus.can_transition(market.market_type, current, new_status):
        raise InvalidTransitionError(
            f"Market {market.id} cannot move from {current} to {new_status}"
        )

    values = dict(fields)
    values["status"] = new_status
    values["status_updated_at"] = now or utcnow()
    values["updated_at"] = utcnow()

    updated = db.query(Market).filter(
        Market.id == market.id,
        Market.status == current
    ).update(values, synchronize_session=False)
    db.commit()
    db.expire(market)
    return updated == 1


# External markets

def upsert_external_market(db: Session, parent: Market, listing: Dict[str, Any]) -> ExternalMarket:
    """Insert or refresh a listing keyed by (marketplace, external_id)."""
    existing = db.query(ExternalMarket).filter(
        ExternalMarket.marketplace == listing["marketplace"],
        ExternalMarket.external_id == listing["external_id"]
    ).first()

    if existing:
        existing.price = listing["price"]
        existing.liquidity = listing["liquidity"]
        existing.last_update = listing["last_update"]
        db.commit()
        return existing

    external = ExternalMarket(
        market_id=parent.id,
        marketplace=listing["marketplace"],
        external_id=listing["external_id"],
        question=listing.get("question"),
        category=listing.get("category"),
        price=listing["price"],
        liquidity=listing["liquidity"],
        resolution_time=listing.get("resolution_time"),
        last_update=listing["last_update"]
    )
    db.add(external)
    db.commit()
    return external


# Disputes

def find_dispute(db: Session, market_id: str, submitter: str) -> Optional[Dispute]:
    """Any dispute, in any state, for the (market, submitter) pair."""
    return db.query(Dispute).filter(
        Dispute.market_id == market_id,
        Dispute.submitter == submitter.lower()
    ).first()


def find_submitted_duplicate(db: Session, dispute: Dispute, submitter: str) -> Optional[Dispute]:
    """Another dispute for the same market already on-chain and still live."""
    return db.query(Dispute).filter(
        Dispute.id != dispute.id,
        Dispute.market_id == dispute.market_id,
        Dispute.submitter == submitter.lower(),
        Dispute.dispute_id > 0,
        Dispute.status.in_([DisputeStatus.ACTIVE.value, DisputeStatus.RESOLVED.value])
    ).first()


def claim_dispute(db: Session, dispute: Dispute, owner: str, lease_seconds: int,
                  now: Optional[datetime] = None) -> bool:
    """Take the submission lease on a candidate. False if someone else holds it."""
    now = now or utcnow()
    updated = db.query(Dispute).filter(
        Dispute.id == dispute.id,
        Dispute.dispute_id == 0,
        or_(
            Dispute.lease_owner.is_(None),
            Dispute.lease_owner == owner,
            Dispute.lease_expires_at < now
        )
    ).update({
        "lease_owner": owner,
        "lease_expires_at": now + timedelta(seconds=lease_seconds)
    }, synchronize_session=False)
    db.commit()
    db.expire(dispute)
    return updated == 1


def release_dispute(db: Session, dispute: Dispute, owner: str) -> None:
    db.query(Dispute).filter(
        Dispute.id == dispute.id,
        Dispute.lease_owner == owner
    ).update({"lease_owner": None, "lease_expires_at": None}, synchronize_session=False)
    db.commit()
    db.expire(dispute)


def set_onchain_dispute_id(db: Session, dispute: Dispute, onchain_id: int, **fields: Any) -> bool:
    """Record the on-chain id. Only ever succeeds once per row (0 -> nonzero)."""
    if onchain_id <= 0:
        raise ValueError(f"Invalid on-chain dispute id {onchain_id}")

    values = dict(fields)
    values["dispute_id"] = onchain_id
    values["lease_owner"] = None
    values["lease_expires_at"] = None
    values["updated_at"] = utcnow()

    updated = db.query(Dispute).filter(
        Dispute.id == dispute.id,
        Dispute.dispute_id == 0
    ).update(values, synchronize_session=False)
    db.commit()
    db.expire(dispute)
    return updated == 1


def transition_dispute_status(db: Session, dispute: Dispute, new_status: str) -> bool:
    """Forward-only status change; a no-op returning False if the row already moved."""
    current = dispute.status
    if current == new_status:
        return False
    if not DisputeStatus.can_transition(current, new_status):
        raise InvalidTransitionError(
            f"Dispute {dispute.id} cannot move from {current} to {new_status}"
        )

    updated = db.query(Dispute).filter(
        Dispute.id == dispute.id,
        Dispute.status == current
    ).update({"status": new_status, "updated_at": utcnow()}, synchronize_session=False)
    db.commit()
    db.expire(dispute)
    return updated == 1


def vote_tally(db: Session, dispute: Dispute) -> Dict[str, Any]:
    """Votes for/against a dispute and the weighted support ratio."""
    rows = db.query(Vote.support, func.count(Vote.id), func.coalesce(func.sum(Vote.weight), 0.0)).filter(
        Vote.dispute_id == dispute.id
    ).group_by(Vote.support).all()

    votes_for = votes_against = 0
    weight_for = weight_against = 0.0
    for support, count, weight in rows:
        if support:
            votes_for, weight_for = count, float(weight)
        else:
            votes_against, weight_against = count, float(weight)

    total_weight = weight_for + weight_against
    return {
        "votes_for": votes_for,
        "votes_against": votes_against,
        "support_ratio": weight_for / total_weight if total_weight else None
    }


# Scan checkpoints

def get_checkpoint(db: Session, name: str, chain_id: int, contract_address: str) -> Optional[int]:
    checkpoint = db.query(ScanCheckpoint).filter(
        ScanCheckpoint.name == name,
        ScanCheckpoint.chain_id == chain_id,
        ScanCheckpoint.contract_address == contract_address.lower()
    ).first()
    return checkpoint.last_block if checkpoint else None


def save_checkpoint(db: Session, name: str, chain_id: int, contract_address: str, last_block: int) -> None:
    checkpoint = db.query(ScanCheckpoint).filter(
        ScanCheckpoint.name == name,
        ScanCheckpoint.chain_id == chain_id,
        ScanCheckpoint.contract_address == contract_address.lower()
    ).first()

    if checkpoint:
        checkpoint.last_block = last_block
    else:
        db.add(ScanCheckpoint(
            name=name,
            chain_id=chain_id,
            contract_address=contract_address.lower(),
            last_block=last_block
        ))
    db.commit()
