from sqlmodel import select, Session
import logging
from sqlalchemy.exc import SQLAlchemyError
from teamshare.models import Team
from teamshare.database import engine
from .membership import membership_snapshot
from .propagation import BatchedPropagator, FullResync

logger = logging.getLogger(__name__)


def resync_all_teams(batch_size: int = None) -> dict:
    """Recompute file and folder ACLs of every team from its current membership."""
    totals = {"teams": 0, "resources": 0, "updated": 0, "failed": 0, "failed_teams": []}
    with Session(engine) as session:
        propagator = (BatchedPropagator(session, batch_size=batch_size)
                      if batch_size else BatchedPropagator(session))
        team_ids = session.exec(select(Team.id)).all()

        for team_id in team_ids:
            try:
                members = membership_snapshot(session, team_id)
                results = propagator.propagate(team_id, FullResync(members))
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Error resyncing team {team_id}: {e}")
                totals["failed_teams"].append(team_id)
                continue
            totals["teams"] += 1
            totals["resources"] += len(results)
            totals["updated"] += sum(1 for result in results if result.updated)
            totals["failed"] += sum(1 for result in results if result.error)

    logger.info(
        f"Nightly ACL resync: {totals['teams']} teams, {totals['updated']} of "
        f"{totals['resources']} files/folders updated, {totals['failed']} failed"
    )
    return totals
