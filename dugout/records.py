"""
Versioned record store for owner-authored tracking entities.

One store per entity type (athlete, season, game, practice); all share the
same contract:

- ``create`` is idempotent on the client-generated ``local_id`` so a retry
  after a dropped response returns the already-created record.
- ``update`` is a compare-and-swap on ``version``. A writer holding an old
  version gets :class:`StaleVersion` and must re-fetch; nothing is merged.
- ``soft_delete`` flips the record to the deleted state and bumps the
  version so other devices see the tombstone through ``changes_since``.
- ``list`` returns active records in creation order and can be resumed from
  the id of the last record seen.
"""
from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta

import structlog
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError

from dugout.errors import NotFound, StaleVersion
from dugout.models import EntityType, SyncedRecord, db, utcnow

logger = structlog.get_logger(__name__)

# Keys the store owns; clients cannot smuggle them in through the payload
RESERVED_KEYS = frozenset(
    {
        "id",
        "remote_id",
        "local_id",
        "owner_id",
        "entity_type",
        "version",
        "is_deleted",
        "deleted_at",
        "created_at",
        "updated_at",
        "state",
    }
)

MAX_LOCAL_ID_LENGTH = 64

# How far before ``since`` changes_since looks again. updated_at is stamped
# before commit, so a slow transaction can commit a timestamp older than the
# newest change a reader has already seen.
CHANGE_OVERLAP = timedelta(seconds=30)


def _clean_payload(data: dict | None) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Record payload must be an object")
    return {k: v for k, v in data.items() if k not in RESERVED_KEYS}


class VersionedRecordStore:
    """Optimistic-concurrency store for one entity type.

    Args:
        entity_type: The entity type this store manages
        page_size: Default page size for :meth:`list`
    """

    def __init__(self, entity_type: EntityType, page_size: int = 100):
        self.entity_type = entity_type
        self.page_size = page_size

    def __repr__(self) -> str:
        return f"<VersionedRecordStore {self.entity_type.value}>"

    def _owned(self, owner_id: str):
        return select(SyncedRecord).where(
            SyncedRecord.owner_id == owner_id,
            SyncedRecord.entity_type == self.entity_type,
        )

    def _find_by_local_id(self, owner_id: str, local_id: str) -> SyncedRecord | None:
        return db.session.execute(
            self._owned(owner_id).where(SyncedRecord.local_id == local_id)
        ).scalar_one_or_none()

    def get(self, owner_id: str, record_id: str) -> SyncedRecord:
        """Fetch an active record.

        Raises:
            NotFound: If the record is absent, owned by someone else or soft-deleted
        """
        record = db.session.execute(
            self._owned(owner_id).where(SyncedRecord.id == record_id)
        ).scalar_one_or_none()
        if record is None or record.is_deleted:
            raise NotFound(f"{self.entity_type.value} {record_id} not found")
        return record

    def create(self, owner_id: str, local_id: str, payload: dict | None = None) -> SyncedRecord:
        """
        Create a record, or return the existing one for the same ``local_id``.

        A retried create never duplicates a record and never resurrects one
        that was soft-deleted in between; the stored record is returned as is.

        Args:
            owner_id: Principal who owns the record
            local_id: Client-generated stable identifier
            payload: Opaque entity fields

        Returns:
            SyncedRecord: The created (or previously created) record

        Raises:
            ValueError: If local_id or payload is malformed
        """
        if not local_id or not isinstance(local_id, str):
            raise ValueError("local_id is required")
        if len(local_id) > MAX_LOCAL_ID_LENGTH:
            raise ValueError(f"local_id must be at most {MAX_LOCAL_ID_LENGTH} characters")
        fields = _clean_payload(payload)

        existing = self._find_by_local_id(owner_id, local_id)
        if existing is not None:
            logger.info(
                "record_create_replayed",
                entity_type=self.entity_type.value,
                record_id=existing.id,
                owner_id=owner_id,
            )
            return existing

        now = utcnow()
        record = SyncedRecord(
            owner_id=owner_id,
            entity_type=self.entity_type,
            local_id=local_id,
            payload=fields,
            version=1,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent retry of the same create
            db.session.rollback()
            existing = self._find_by_local_id(owner_id, local_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "record_created",
            entity_type=self.entity_type.value,
            record_id=record.id,
            owner_id=owner_id,
        )
        return record

    def update(
        self, owner_id: str, record_id: str, patch: dict, expected_version: int
    ) -> SyncedRecord:
        """
        Apply a shallow patch if the stored version still equals ``expected_version``.

        Args:
            owner_id: Principal who owns the record
            record_id: Remote id of the record
            patch: Fields to merge into the payload
            expected_version: Version the caller last read

        Returns:
            SyncedRecord: The updated record at ``expected_version + 1``

        Raises:
            NotFound: If the record is absent or soft-deleted
            StaleVersion: If the stored version differs; the record is unchanged
        """
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise ValueError("expected_version must be an integer")
        record = self.get(owner_id, record_id)
        if record.version != expected_version:
            raise StaleVersion(record_id, expected_version, record.version)

        merged = dict(record.payload or {})
        merged.update(_clean_payload(patch))
        now = utcnow()

        # Compare-and-swap: only one writer can move the version forward
        result = db.session.execute(
            update(SyncedRecord)
            .where(
                SyncedRecord.id == record_id,
                SyncedRecord.version == expected_version,
                SyncedRecord.is_deleted.is_(False),
            )
            .values(payload=merged, version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            current = db.session.get(SyncedRecord, record_id, populate_existing=True)
            if current is None or current.is_deleted:
                raise NotFound(f"{self.entity_type.value} {record_id} not found")
            raise StaleVersion(record_id, expected_version, current.version)
        db.session.commit()

        db.session.refresh(record)
        logger.info(
            "record_updated",
            entity_type=self.entity_type.value,
            record_id=record_id,
            version=record.version,
        )
        return record

    def soft_delete(self, owner_id: str, record_id: str) -> SyncedRecord:
        """
        Mark a record deleted; the row is kept as a tombstone.

        Raises:
            NotFound: If the record is absent or already deleted
        """
        record = self.get(owner_id, record_id)
        now = utcnow()
        result = db.session.execute(
            update(SyncedRecord)
            .where(SyncedRecord.id == record_id, SyncedRecord.is_deleted.is_(False))
            .values(
                is_deleted=True,
                deleted_at=now,
                updated_at=now,
                version=SyncedRecord.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise NotFound(f"{self.entity_type.value} {record_id} not found")
        db.session.commit()

        db.session.refresh(record)
        logger.info(
            "record_soft_deleted",
            entity_type=self.entity_type.value,
            record_id=record_id,
            version=record.version,
        )
        return record

    def list(
        self, owner_id: str, after: str | None = None, limit: int | None = None
    ) -> list[SyncedRecord]:
        """
        Return a page of active records in ascending creation order.

        Args:
            owner_id: Principal who owns the records
            after: Id of the last record of the previous page (resume cursor)
            limit: Page size (defaults to the store's page size)

        Raises:
            NotFound: If ``after`` does not name one of the owner's records
        """
        limit = limit or self.page_size
        if limit < 1:
            raise ValueError("limit must be positive")
        stmt = self._owned(owner_id).where(SyncedRecord.is_deleted.is_(False))
        if after:
            cursor = db.session.execute(
                self._owned(owner_id).where(SyncedRecord.id == after)
            ).scalar_one_or_none()
            if cursor is None:
                raise NotFound(f"Cursor record {after} not found")
            # Keyset on (created_at, id); works even if the cursor was deleted since
            stmt = stmt.where(
                or_(
                    SyncedRecord.created_at > cursor.created_at,
                    and_(
                        SyncedRecord.created_at == cursor.created_at,
                        SyncedRecord.id > cursor.id,
                    ),
                )
            )
        stmt = stmt.order_by(SyncedRecord.created_at.asc(), SyncedRecord.id.asc()).limit(
            limit
        )
        return list(db.session.execute(stmt).scalars())

    def iter_records(self, owner_id: str, page_size: int | None = None) -> Iterator[SyncedRecord]:
        """Yield every active record, page by page."""
        after = None
        while True:
            page = self.list(owner_id, after=after, limit=page_size)
            yield from page
            if len(page) < (page_size or self.page_size):
                return
            after = page[-1].id

    def changes_since(
        self,
        owner_id: str,
        since: datetime | None = None,
        overlap: timedelta = CHANGE_OVERLAP,
    ) -> list[SyncedRecord]:
        """
        Records modified after ``since - overlap``, tombstones included, oldest change first.

        A device replays these onto its local cache; seeing tombstones keeps it
        from resurrecting records another device deleted. Records inside the
        overlap window may come back more than once; devices keep whichever
        copy has the higher version. Pass the ``server_time`` of the previous
        response as the next ``since``.
        """
        stmt = self._owned(owner_id)
        if since is not None:
            stmt = stmt.where(SyncedRecord.updated_at > since - overlap)
        stmt = stmt.order_by(SyncedRecord.updated_at.asc(), SyncedRecord.id.asc())
        return list(db.session.execute(stmt).scalars())

    def purge_owner(self, owner_id: str) -> int:
        """
        Physically delete every record of this type for an owner, tombstones too.

        Only account deletion calls this. The delete is staged on the session;
        the caller commits.

        Returns:
            int: Number of rows deleted
        """
        result = db.session.execute(
            delete(SyncedRecord)
            .where(
                SyncedRecord.owner_id == owner_id,
                SyncedRecord.entity_type == self.entity_type,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


athletes = VersionedRecordStore(EntityType.ATHLETE)
seasons = VersionedRecordStore(EntityType.SEASON)
games = VersionedRecordStore(EntityType.GAME)
practices = VersionedRecordStore(EntityType.PRACTICE)

STORES = {
    store.entity_type: store for store in (athletes, seasons, games, practices)
}


def store_for(entity_type: EntityType | str) -> VersionedRecordStore:
    """Look up the store for an entity type (enum or its string value).

    Raises:
        NotFound: If the entity type is unknown
    """
    try:
        key = entity_type if isinstance(entity_type, EntityType) else EntityType(entity_type)
    except ValueError as e:
        raise NotFound(f"Unknown entity type {entity_type!r}") from e
    return STORES[key]
