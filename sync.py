from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from credentials import CredentialResolver
from errors import (
    CredentialUnavailable,
    InconsistentReference,
    ProviderError,
    SyncFailed,
)
from ledger import LedgerStore
from models import Link
from provider import ProviderClient
from schemas import SyncFailure, SyncStats, SyncSummary, TransactionDelta

logger = logging.getLogger(__name__)


class SyncService:
    """Incremental, cursor-based sync of a user's links into the ledger.

    Every delta page is committed together with the cursor that follows it, so
    an interrupted sync resumes from the last applied page. Re-applying a page
    is harmless because upserts and deletes are keyed by external id.
    """

    def __init__(
        self,
        session: Session,
        provider: ProviderClient,
        credentials: CredentialResolver,
        user_id: str,
        *,
        page_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.provider = provider
        self.credentials = credentials
        self.user_id = user_id
        self.ledger = LedgerStore(session, user_id)
        self.page_size = page_size or get_settings().sync_page_size
        self.clock = clock

    def sync_link(self, link_id: int, *, deadline: Optional[float] = None) -> SyncStats:
        link = self.ledger.get_link(link_id)
        stats = SyncStats()
        logger.info(f"sync_link: link_id={link.id} cursor={'set' if link.cursor else 'none'}")
        try:
            credential = self.credentials.resolve(link)
            self._check_deadline(deadline)
            self._refresh_accounts(link, credential)

            has_more = True
            while has_more:
                self._check_deadline(deadline)
                delta = self.provider.fetch_transaction_delta(
                    credential, link.cursor, count=self.page_size
                )
                self._apply_page(link, delta)
                self.ledger.advance_cursor(link, delta.next_cursor)
                self.session.commit()

                stats.added += len(delta.added)
                stats.modified += len(delta.modified)
                stats.removed += len(delta.removed)
                has_more = delta.has_more

            self.ledger.mark_synced(link)
            self.session.commit()
        except (CredentialUnavailable, ProviderError, InconsistentReference) as exc:
            self.session.rollback()
            raise self._failure(link_id, _failure_kind(exc), str(exc), stats) from exc
        except _DeadlineExceeded as exc:
            self.session.rollback()
            raise self._failure(link_id, "deadline_exceeded", str(exc), stats) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._failure(link_id, "ledger_error", str(exc), stats) from exc

        logger.info(
            f"sync_link: link_id={link.id} added={stats.added} "
            f"modified={stats.modified} removed={stats.removed}"
        )
        return stats

    def sync_all_links(self, *, deadline: Optional[float] = None) -> SyncSummary:
        """Sync every link of the user in order, continuing past failed links."""
        summary = SyncSummary()
        for link in self.ledger.list_links():
            try:
                stats = self.sync_link(link.id, deadline=deadline)
            except SyncFailed as exc:
                stats = exc.stats
                summary.failures.append(
                    SyncFailure(
                        link_id=exc.link_id,
                        kind=exc.kind,
                        message=exc.message,
                        stats=exc.stats,
                    )
                )
            else:
                summary.synced_links += 1
            summary.total_added += stats.added
            summary.total_modified += stats.modified
            summary.total_removed += stats.removed
        return summary

    def _refresh_accounts(self, link: Link, credential: str) -> None:
        snapshots = self.provider.fetch_accounts(credential)
        for snapshot in snapshots:
            self.ledger.upsert_account(link, snapshot)
        self.session.commit()
        logger.info(f"sync_link: link_id={link.id} accounts_refreshed={len(snapshots)}")

    def _apply_page(self, link: Link, delta: TransactionDelta) -> None:
        for snapshot in [*delta.added, *delta.modified]:
            account = self.ledger.ensure_account(link, snapshot.account_id)
            self.ledger.upsert_transaction(link, account, snapshot)
        if delta.removed:
            self.ledger.delete_transactions_by_external_id(
                link, [entry.transaction_id for entry in delta.removed]
            )

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and self.clock() >= deadline:
            raise _DeadlineExceeded("Sync deadline exceeded")

    def _failure(
        self, link_id: int, kind: str, message: str, stats: SyncStats
    ) -> SyncFailed:
        logger.warning(
            f"sync_link_failed: link_id={link_id} kind={kind} added={stats.added} "
            f"modified={stats.modified} removed={stats.removed} message={message}"
        )
        return SyncFailed(link_id, kind, message, stats.model_copy())


class _DeadlineExceeded(Exception):
    pass


def _failure_kind(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, CredentialUnavailable):
        return "credential_unavailable"
    return "inconsistent_reference"
