import logging
import time
from functools import lru_cache
from typing import Annotated, Iterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from credentials import AesGcmCredentialStore
from dashboard import DashboardService
from database import session_scope
from demo_seed import DemoSeedService
from errors import (
    CredentialUnavailable,
    InconsistentReference,
    NotFound,
    ProviderError,
    SyncFailed,
)
from ledger import LedgerStore
from provider import PlaidProviderClient, ProviderClient
from schemas import (
    AccountOut,
    CancellationRequest,
    CancellationSimulationResult,
    DashboardSummary,
    DemoSeedIn,
    DemoSeedResult,
    LinkMetadata,
    LinkOut,
    SubscriptionOverview,
    SyncRequest,
    SyncSummary,
    TransactionPage,
    TransactionQuery,
)
from subscriptions import SubscriptionService
from sync import SyncService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger Sync")


def get_db() -> Iterator[Session]:
    with session_scope() as session:
        yield session


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized.")
    return x_user_id.strip()


@lru_cache(maxsize=1)
def get_provider() -> ProviderClient:
    return PlaidProviderClient(get_settings())


@lru_cache(maxsize=1)
def get_credential_store() -> AesGcmCredentialStore:
    return AesGcmCredentialStore(get_settings().token_key)


@app.exception_handler(NotFound)
def not_found_handler(_request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InconsistentReference)
def inconsistent_reference_handler(
    _request: Request, exc: InconsistentReference
) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CredentialUnavailable)
def credential_unavailable_handler(
    _request: Request, exc: CredentialUnavailable
) -> JSONResponse:
    return JSONResponse(
        status_code=409, content={"detail": str(exc), "kind": "credential_unavailable"}
    )


@app.exception_handler(SyncFailed)
def sync_failed_handler(_request: Request, exc: SyncFailed) -> JSONResponse:
    status_code = 409 if exc.reconnect_required else 502
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "kind": exc.kind,
            "link_id": exc.link_id,
            "retryable": exc.retryable,
            "stats": exc.stats.model_dump(),
        },
    )


@app.exception_handler(ProviderError)
def provider_error_handler(_request: Request, exc: ProviderError) -> JSONResponse:
    status_code = 502 if exc.retryable else 409
    return JSONResponse(
        status_code=status_code, content={"detail": str(exc), "kind": exc.kind}
    )


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/links", response_model=list[LinkOut])
def list_links(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    return LedgerStore(db, user_id).list_links()


@app.get("/api/links/{link_id}/institution", response_model=LinkMetadata)
def link_institution(
    link_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    provider: ProviderClient = Depends(get_provider),
    credentials: AesGcmCredentialStore = Depends(get_credential_store),
):
    link = LedgerStore(db, user_id).get_link(link_id)
    return provider.fetch_link_metadata(credentials.resolve(link))


@app.post("/api/links/sync", response_model=SyncSummary)
def sync_links(
    payload: Optional[SyncRequest] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    provider: ProviderClient = Depends(get_provider),
    credentials: AesGcmCredentialStore = Depends(get_credential_store),
):
    settings = get_settings()
    deadline = None
    if settings.sync_timeout_secs > 0:
        deadline = time.monotonic() + settings.sync_timeout_secs
    service = SyncService(db, provider, credentials, user_id)

    link_id = payload.link_id if payload else None
    if link_id is not None:
        stats = service.sync_link(link_id, deadline=deadline)
        return SyncSummary(
            synced_links=1,
            total_added=stats.added,
            total_modified=stats.modified,
            total_removed=stats.removed,
        )

    summary = service.sync_all_links(deadline=deadline)
    logger.info(
        f"sync_links: user_id={user_id} synced={summary.synced_links} "
        f"failed={len(summary.failures)}"
    )
    return summary


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    return LedgerStore(db, user_id).list_accounts()


@app.get("/api/transactions", response_model=TransactionPage)
def list_transactions(
    query: Annotated[TransactionQuery, Query()],
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    if query.start and query.end and query.start > query.end:
        raise HTTPException(status_code=400, detail="Start date must be before end date")
    return LedgerStore(db, user_id).query_transactions(query)


@app.get("/api/dashboard", response_model=DashboardSummary)
def dashboard(db: Session = Depends(get_db), user_id: str = Depends(get_user_id)):
    return DashboardService(db, user_id).summary()


@app.get("/api/subscriptions", response_model=SubscriptionOverview)
def subscriptions(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    return SubscriptionService(db, user_id).overview()


@app.post(
    "/api/subscriptions/simulate-cancel", response_model=CancellationSimulationResult
)
def simulate_cancel(
    payload: CancellationRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    return SubscriptionService(db, user_id).simulate_cancellation(payload.merchant_names)


@app.post("/api/demo-seed", response_model=DemoSeedResult)
def demo_seed(
    payload: Optional[DemoSeedIn] = None,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
    credentials: AesGcmCredentialStore = Depends(get_credential_store),
):
    reset_existing = payload.reset_existing if payload else False
    return DemoSeedService(db, user_id, credentials).seed(reset_existing=reset_existing)
