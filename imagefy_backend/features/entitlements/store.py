"""
Entitlement record store.

Async facade over the entitlement_records table. Every call runs the blocking
SQLAlchemy work in the threadpool with a deadline. Single-record writes are
atomic (one INSERT .. ON CONFLICT or one UPDATE); nothing here spans a
read-then-write, so callers that decide on a read accept last-write-wins.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from imagefy_backend.core.blocking import run_blocking
from imagefy_backend.core.database import check_connection, entitlement_records, upsert_statement
from imagefy_backend.core.errors import StoreError
from imagefy_backend.features.entitlements.models import EntitlementRecord, Mutation


logger = logging.getLogger("imagefy.store")

DEFAULT_TIMEOUT_SECONDS = 5.0


class EntitlementStore:
    """Reads and writes entitlement records keyed by email."""

    def __init__(self, engine: Engine, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.engine = engine
        self.timeout = timeout

    # -- blocking implementations -------------------------------------------------

    def _get_sync(self, email: str) -> Optional[EntitlementRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(entitlement_records).where(entitlement_records.c.email == email)
            ).mappings().fetchone()
        return EntitlementRecord.from_row(row) if row else None

    def _apply_sync(self, mutation: Mutation) -> bool:
        values: Dict[str, Any] = dict(mutation.set_fields)
        for name in mutation.clear_fields:
            values[name] = None
        values["updated_at"] = datetime.now(timezone.utc)

        with self.engine.begin() as conn:
            if mutation.upsert:
                stmt = upsert_statement(self.engine, entitlement_records).values(email=mutation.email, **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[entitlement_records.c.email],
                    set_=values,
                )
                conn.execute(stmt)
                return True

            result = conn.execute(
                update(entitlement_records)
                .where(entitlement_records.c.email == mutation.email)
                .values(**values)
            )
            return result.rowcount > 0

    # -- async API ------------------------------------------------------------------

    async def get(self, email: str) -> Optional[EntitlementRecord]:
        """
        Fetch the record for an email.

        Raises:
            StoreError: On database failure
            UpstreamTimeoutError: If the query exceeds the store timeout
        """
        try:
            return await run_blocking(self._get_sync, email, timeout=self.timeout, label="entitlement lookup")
        except SQLAlchemyError as e:
            raise StoreError(f"Entitlement lookup failed: {e}") from e

    async def apply(self, mutation: Mutation) -> bool:
        """
        Persist a mutation.

        Returns:
            True if a record was written, False if an update matched nothing

        Raises:
            StoreError: On database failure
            UpstreamTimeoutError: If the write exceeds the store timeout
        """
        try:
            written = await run_blocking(self._apply_sync, mutation, timeout=self.timeout, label="entitlement write")
        except SQLAlchemyError as e:
            raise StoreError(f"Entitlement write failed: {e}") from e

        if not written:
            logger.info("store.update_no_match", extra={"email": mutation.email})
        return written

    async def ping(self) -> bool:
        try:
            return await run_blocking(check_connection, self.engine, timeout=self.timeout, label="database ping")
        except SQLAlchemyError as e:
            raise StoreError(f"Database unreachable: {e}") from e
