"""
Batched propagation of team membership into shared file and folder ACLs.

Resources are processed files first, then folders. Writes are staged into a
``WriteBatch`` that is committed whenever it reaches its ceiling, so an
unbounded number of resources never exceeds the store's batch limit. The pass
is best-effort: a resource that fails is logged in the result list and the
remaining resources are still processed.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from ..config import ACL_BATCH_SIZE, ACL_MODIFIED_BY
from ..models import SharedFile, SharedFolder
from ..schemas.permissions import PropagationResult
from ..utils.time import get_time_stamp
from .permissions import AccessControlList, permissions_changed


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grant:
    member_id: str
    role: Optional[str]

    def apply(self, acl: AccessControlList) -> AccessControlList:
        return acl.upsert(self.member_id, self.role)


@dataclass(frozen=True)
class Revoke:
    member_id: str

    def apply(self, acl: AccessControlList) -> AccessControlList:
        return acl.remove(self.member_id)


@dataclass(frozen=True)
class ChangeRole:
    member_id: str
    role: str

    def apply(self, acl: AccessControlList) -> AccessControlList:
        # Revoke, then grant the new tier
        return acl.remove(self.member_id).upsert(self.member_id, self.role)


@dataclass(frozen=True)
class FullResync:
    members: Mapping[str, Optional[str]]

    def apply(self, acl: AccessControlList) -> AccessControlList:
        return AccessControlList.recompute(self.members)


@dataclass
class StagedWrite:
    model: Type[SQLModel]
    resource_id: str
    permissions: Dict[str, List[str]]
    result: PropagationResult


@dataclass
class WriteBatch:
    session: Session
    limit: int = ACL_BATCH_SIZE
    modified_by: str = ACL_MODIFIED_BY
    staged: List[StagedWrite] = field(default_factory=list)
    commits: int = 0

    @property
    def is_full(self) -> bool:
        return len(self.staged) >= self.limit

    def stage(self, model: Type[SQLModel], resource_id: str,
              permissions: Dict[str, List[str]], result: PropagationResult):
        if self.is_full:
            raise RuntimeError("Write batch is full, commit it before staging more writes")
        self.staged.append(StagedWrite(model, resource_id, permissions, result))

    def commit(self):
        """Apply the staged writes in one transaction, then start over empty."""
        staged, self.staged = self.staged, []
        if not staged:
            return

        try:
            now = get_time_stamp()
            for write in staged:
                # Re-read so a resource deleted since the scan is noticed here
                resource = self.session.get(write.model, write.resource_id, populate_existing=True)
                if resource is None:
                    write.result.updated = False
                    write.result.error = "Resource no longer exists"
                    logger.warning(f"Skipping permission update for deleted resource {write.resource_id}")
                    continue
                resource.permissions = write.permissions
                resource.last_modified = now
                resource.last_modified_by = self.modified_by
                self.session.add(resource)
            self.session.commit()
            self.commits += 1
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Permission batch commit failed for {len(staged)} resources: {e}")
            for write in staged:
                if write.result.error is None:
                    write.result.updated = False
                    write.result.error = str(e)


class BatchedPropagator:
    # (model, result type, name attribute, fallback name), in processing order
    RESOURCE_TYPES = (
        (SharedFile, "file", "file_name", "Unknown File"),
        (SharedFolder, "folder", "folder_name", "Unknown Folder"),
    )

    def __init__(self, session: Session, batch_size: int = ACL_BATCH_SIZE,
                 modified_by: str = ACL_MODIFIED_BY):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.session = session
        self.batch_size = batch_size
        self.modified_by = modified_by

    def _load(self, model, name_attr: str, team_id: str):
        statement = (
            select(model.id, getattr(model, name_attr), model.permissions)
            .where(model.team_id == team_id)
            .order_by(model.created_at, model.id)
        )
        return self.session.exec(statement).all()

    @staticmethod
    def _read(stored, op, result: PropagationResult) -> AccessControlList:
        # Full resyncs overwrite unreadable records
        try:
            return AccessControlList.from_permissions(stored)
        except ValueError as e:
            if not isinstance(op, FullResync):
                raise
            logger.warning(f"Replacing malformed permissions on {result.type} {result.resource_id}: {e}")
            result.note = f"Malformed permissions replaced: {e}"
            return AccessControlList()

    def propagate(self, team_id: str, op, dry_run: bool = False) -> List[PropagationResult]:
        """
        Apply ``op`` to every file and folder of the team.

        Returns one result per resource. With ``dry_run`` nothing is written and
        the results describe what a real pass would change.
        """
        results: List[PropagationResult] = []
        batch = WriteBatch(self.session, limit=self.batch_size, modified_by=self.modified_by)

        for model, resource_type, name_attr, fallback_name in self.RESOURCE_TYPES:
            rows = self._load(model, name_attr, team_id)
            for resource_id, name, stored in rows:
                result = PropagationResult(resource_id=resource_id,
                                           name=name or fallback_name,
                                           type=resource_type)
                results.append(result)
                try:
                    current = self._read(stored, op, result)
                    target = op.apply(current)
                    result.conflicts = list(current.conflicts)
                    next_permissions = target.to_permissions()
                    if result.note is None and not permissions_changed(stored, next_permissions):
                        continue
                    result.updated = True
                    if dry_run:
                        continue
                    batch.stage(model, resource_id, next_permissions, result)
                    if batch.is_full:
                        batch.commit()
                except (ValueError, TypeError) as e:
                    logger.error(f"Error updating {resource_type} {resource_id}: {e}")
                    result.updated = False
                    result.error = str(e)

        if not dry_run:
            batch.commit()

        updated_count = sum(1 for result in results if result.updated)
        failed_count = sum(1 for result in results if result.error)
        logger.info(
            f"{type(op).__name__} on team {team_id}: updated {updated_count} of "
            f"{len(results)} files/folders ({failed_count} failed, {batch.commits} commits"
            f"{', dry run' if dry_run else ''})"
        )
        return results

