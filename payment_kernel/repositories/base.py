"""
BaseRepository -- SQLAlchemy persistence for versioned domain entities.

Responsibility:
    Maps a domain entity to its ORM row (``from_dto`` / ``update_from_dto``
    / ``to_dto``) and persists it inside the caller's transaction.

Architecture position:
    Kernel > Repositories -- imperative shell.  Implements the persistence
    Protocols in ``payment_kernel.domain.contracts``.  May import from
    db/, models/ and domain/.

Invariants enforced:
    - Flush only: repositories never commit or roll back; the caller
      (``session_scope`` or a test harness) owns the transaction.
    - Optimistic locking: an entity is written only if its ``version``
      matches the row it was loaded from.  A concurrent writer's UPDATE
      matches zero rows and surfaces as OptimisticLockError.
    - Callers always receive domain entities, never ORM rows.

Failure modes:
    - OptimisticLockError on a version mismatch (in-session or at flush).
      After a flush failure the session must be rolled back by its owner.
"""

from abc import ABC
from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from payment_kernel.db.base import Base
from payment_kernel.exceptions import OptimisticLockError
from payment_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)
EntityType = TypeVar("EntityType")

logger = get_logger("repositories")


class BaseRepository(ABC, Generic[ModelType, EntityType]):
    """
    Abstract base for entity repositories.

    Contract:
        Subclasses set ``model`` (the ORM class) and ``entity_name`` (used
        in error context).  The ORM class provides ``to_dto``, ``from_dto``
        and ``update_from_dto`` and declares ``version`` as its
        ``version_id_col``.

    Guarantees:
        - ``save`` returns the same entity with ``version`` advanced to
          the persisted row version.
        - The session is flushed but never committed.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    model: ClassVar[type[Any]]
    entity_name: ClassVar[str]

    def __init__(self, session: Session):
        self.session = session

    def _load(self, entity_id: str) -> ModelType | None:
        return self.session.get(self.model, entity_id)

    def find_by_id(self, entity_id: str) -> EntityType | None:
        row = self._load(entity_id)
        return None if row is None else row.to_dto()

    def save(self, entity: EntityType) -> EntityType:
        """Insert a new entity or update an existing one under version check."""
        row = self._load(entity.id)
        if row is None:
            if entity.version != 0:
                # Loaded earlier but the row is gone.
                raise OptimisticLockError(self.entity_name, entity.id)
            row = self.model.from_dto(entity)
            self.session.add(row)
            action = "inserted"
        else:
            if row.version != entity.version:
                logger.warning(
                    "optimistic_lock_conflict",
                    extra={
                        "entity_type": self.entity_name,
                        "entity_id": entity.id,
                        "expected_version": entity.version,
                        "actual_version": row.version,
                    },
                )
                raise OptimisticLockError(self.entity_name, entity.id)
            row.update_from_dto(entity)
            action = "updated"

        self._flush(entity.id)
        entity.version = row.version
        logger.debug(
            f"{self.entity_name}_{action}",
            extra={"entity_id": entity.id, "version": row.version},
        )
        return entity

    def _flush(self, entity_id: str) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={"entity_type": self.entity_name, "entity_id": entity_id},
            )
            raise OptimisticLockError(self.entity_name, entity_id) from exc
