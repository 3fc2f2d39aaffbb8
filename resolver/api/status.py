"""
Operational endpoints for the resolution services.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from resolver.config import settings
from resolver.database import get_db
from resolver.models.dispute import Dispute
from resolver.models.market import Market
from resolver.models.scan_checkpoint import ScanCheckpoint
from resolver.services.market_syncer import MarketSyncer

router = APIRouter(prefix=settings.api_v1_prefix, tags=["Resolution Services"])

logger = logging.getLogger(__name__)


@router.get("/status")
async def get_status(db: Session = Depends(get_db)):
    """
    Bookkeeping snapshot: event scan watermarks plus dispute and market
    counts by status.
    """
    try:
        disputes = dict(db.query(Dispute.status, func.count(Dispute.id)).group_by(Dispute.status).all())
        pending = db.query(func.count(Dispute.id)).filter(Dispute.dispute_id == 0).scalar()
        markets = dict(
            db.query(Market.status, func.count(Market.id)).group_by(Market.status).all()
        )
        checkpoints = [
            {
                "name": checkpoint.name,
                "chain_id": checkpoint.chain_id,
                "contract_address": checkpoint.contract_address,
                "last_block": checkpoint.last_block,
                "updated_at": checkpoint.updated_at.isoformat()
            }
            for checkpoint in db.query(ScanCheckpoint).all()
        ]
        return {
            "disputes": disputes,
            "pending_submissions": pending,
            "markets": markets,
            "checkpoints": checkpoints
        }
    except Exception as e:
        logger.error(f"Error building status: {e}")
        raise HTTPException(status_code=500, detail=f"Status failed: {str(e)}")


@router.post("/markets/sync")
async def sync_markets(db: Session = Depends(get_db)):
    """Run one market syncer pass and report how many listings were upserted."""
    try:
        synced = await MarketSyncer().sync_markets(db)
        return {"success": True, "synced": synced}
    except Exception as e:
        logger.error(f"Market sync error: {e}")
        raise HTTPException(status_code=500, detail="Sync failed")
