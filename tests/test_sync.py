from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from credentials import AesGcmCredentialStore
from database import Base
from errors import NotFound, ProviderRejected, ProviderUnavailable, SyncFailed
from ledger import LedgerStore
from models import PLACEHOLDER_ACCOUNT_NAME, Account, Transaction
from sync import SyncService

from fakes import TOKEN_KEY, ProviderByCredential, ScriptedProvider, account, page, txn


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_link(session, store, user_id="alice", external_id="item-1", token="token-1"):
    link = LedgerStore(session, user_id).create_link(external_id, store.encrypt(token))
    session.commit()
    return link


def ledger_state(session, user_id="alice"):
    rows = session.scalars(
        select(Transaction).where(Transaction.user_id == user_id)
    ).all()
    return {
        row.external_transaction_id: (row.amount, row.name, row.account.external_account_id)
        for row in rows
    }


def three_page_script():
    return {
        None: page(
            "c1",
            added=[txn("t1", amount=10.0), txn("t2", amount=20.0)],
            has_more=True,
        ),
        "c1": page(
            "c2",
            added=[txn("t3", amount=30.0)],
            modified=[txn("t1", amount=12.5, name="Corrected")],
            has_more=True,
        ),
        "c2": page("c3", removed=["t2"]),
    }


def test_initial_backfill_applies_every_page_and_stores_cursor():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider([account("acc-1")], three_page_script())

    stats = SyncService(session, provider, store, "alice", page_size=2).sync_link(link.id)

    assert (stats.added, stats.modified, stats.removed) == (3, 1, 1)
    assert provider.requested_cursors == [None, "c1", "c2"]
    assert provider.credentials_seen == ["token-1"]
    assert ledger_state(session) == {
        "t1": (12.5, "Corrected", "acc-1"),
        "t3": (30.0, "Purchase t3", "acc-1"),
    }
    refreshed = LedgerStore(session, "alice").get_link(link.id)
    assert refreshed.cursor == "c3"
    assert refreshed.last_synced_at is not None


def test_incremental_sync_starts_from_stored_cursor():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    script = three_page_script()
    script["c3"] = page("c4", added=[txn("t4", amount=4.0)])
    provider = ScriptedProvider([account("acc-1")], script)
    service = SyncService(session, provider, store, "alice")

    service.sync_link(link.id)
    stats = service.sync_link(link.id)

    assert provider.requested_cursors[-1] == "c3"
    assert (stats.added, stats.modified, stats.removed) == (1, 0, 0)
    assert set(ledger_state(session)) == {"t1", "t3", "t4"}


def test_reapplying_a_page_leaves_ledger_unchanged():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        {None: page("c1", added=[txn("t1"), txn("t2", amount=5.0)])},
    )
    service = SyncService(session, provider, store, "alice")

    service.sync_link(link.id)
    before = ledger_state(session)

    # Simulate a crash between applying the page and persisting its cursor.
    ledger = LedgerStore(session, "alice")
    ledger.advance_cursor(ledger.get_link(link.id), None)
    session.commit()
    service.sync_link(link.id)

    assert ledger_state(session) == before
    assert len(session.scalars(select(Transaction)).all()) == 2


def test_reapplying_mixed_page_leaves_ledger_unchanged():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        {
            None: page("c1", added=[txn("t1"), txn("t2"), txn("t3")], has_more=True),
            "c1": page(
                "c2",
                added=[txn("t4", amount=4.0)],
                modified=[txn("t1", amount=99.0)],
                removed=["t2"],
            ),
        },
    )
    service = SyncService(session, provider, store, "alice")
    service.sync_link(link.id)
    before = ledger_state(session)

    # Rewind so the added/modified/removed page is applied a second time.
    ledger = LedgerStore(session, "alice")
    ledger.advance_cursor(ledger.get_link(link.id), "c1")
    session.commit()
    stats = service.sync_link(link.id)

    assert (stats.added, stats.modified, stats.removed) == (1, 1, 1)
    assert provider.requested_cursors.count("c1") == 2
    assert before == {
        "t1": (99.0, "Purchase t1", "acc-1"),
        "t3": (10.0, "Purchase t3", "acc-1"),
        "t4": (4.0, "Purchase t4", "acc-1"),
    }
    assert ledger_state(session) == before


def test_interrupted_sync_resumes_to_same_state():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        three_page_script(),
        failures={"c2": ProviderUnavailable("upstream timeout")},
    )
    service = SyncService(session, provider, store, "alice")

    with pytest.raises(SyncFailed) as excinfo:
        service.sync_link(link.id)

    failure = excinfo.value
    assert failure.kind == "provider_unavailable"
    assert failure.retryable is True
    assert failure.reconnect_required is False
    assert (failure.stats.added, failure.stats.modified, failure.stats.removed) == (3, 1, 0)
    assert LedgerStore(session, "alice").get_link(link.id).cursor == "c2"
    assert set(ledger_state(session)) == {"t1", "t2", "t3"}

    service.sync_link(link.id)

    clean_session = make_session()
    clean_link = make_link(clean_session, store)
    SyncService(
        clean_session,
        ScriptedProvider([account("acc-1")], three_page_script()),
        store,
        "alice",
    ).sync_link(clean_link.id)

    assert ledger_state(session) == ledger_state(clean_session)
    assert LedgerStore(session, "alice").get_link(link.id).cursor == "c3"


def test_unknown_account_gets_placeholder_then_real_details():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        {
            None: page("c1", added=[txn("t1", account_id="acc-late")]),
            "c1": page("c2"),
        },
    )
    service = SyncService(session, provider, store, "alice")

    service.sync_link(link.id)

    placeholder = session.scalar(
        select(Account).where(Account.external_account_id == "acc-late")
    )
    assert placeholder.name == PLACEHOLDER_ACCOUNT_NAME
    assert placeholder.type == "other"
    assert ledger_state(session)["t1"][2] == "acc-late"

    provider.accounts = [account("acc-1"), account("acc-late", name="Savings")]
    service.sync_link(link.id)

    session.refresh(placeholder)
    assert placeholder.name == "Savings"
    assert placeholder.type == "depository"
    assert len(session.scalars(select(Account)).all()) == 2


def test_removals_only_touch_the_syncing_link():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    first = make_link(session, store, external_id="item-1", token="token-1")
    second = make_link(session, store, external_id="item-2", token="token-2")
    provider = ProviderByCredential(
        {
            "token-1": ScriptedProvider(
                [account("acc-1")], {None: page("a1", added=[txn("shared")])}
            ),
            "token-2": ScriptedProvider(
                [account("acc-2")], {None: page("b1", removed=["shared", "missing"])}
            ),
        }
    )
    service = SyncService(session, provider, store, "alice")

    service.sync_link(first.id)
    stats = service.sync_link(second.id)

    assert stats.removed == 2
    assert "shared" in ledger_state(session)


def test_rejected_credential_keeps_cursor_and_requires_reconnect():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        three_page_script(),
        accounts_error=ProviderRejected("login required", code="ITEM_LOGIN_REQUIRED"),
    )

    with pytest.raises(SyncFailed) as excinfo:
        SyncService(session, provider, store, "alice").sync_link(link.id)

    assert excinfo.value.kind == "provider_rejected"
    assert excinfo.value.reconnect_required is True
    assert excinfo.value.retryable is False
    assert excinfo.value.stats.added == 0
    assert provider.requested_cursors == []
    assert LedgerStore(session, "alice").get_link(link.id).cursor is None


def test_undecryptable_token_fails_without_calling_provider():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = LedgerStore(session, "alice").create_link("item-1", "not-a-token")
    session.commit()
    provider = ScriptedProvider([account("acc-1")], three_page_script())

    with pytest.raises(SyncFailed) as excinfo:
        SyncService(session, provider, store, "alice").sync_link(link.id)

    assert excinfo.value.kind == "credential_unavailable"
    assert provider.credentials_seen == []


def test_link_of_another_user_is_not_found():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store, user_id="alice")
    provider = ScriptedProvider([account("acc-1")], three_page_script())

    with pytest.raises(NotFound):
        SyncService(session, provider, store, "bob").sync_link(link.id)
    assert provider.credentials_seen == []


def test_account_owned_by_another_user_is_inconsistent():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    alice_link = make_link(session, store, user_id="alice", external_id="item-a", token="a")
    bob_link = make_link(session, store, user_id="bob", external_id="item-b", token="b")
    provider = ProviderByCredential(
        {
            "a": ScriptedProvider([account("acc-1")], {None: page("a1")}),
            "b": ScriptedProvider([account("acc-1")], {None: page("b1")}),
        }
    )
    SyncService(session, provider, store, "alice").sync_link(alice_link.id)

    with pytest.raises(SyncFailed) as excinfo:
        SyncService(session, provider, store, "bob").sync_link(bob_link.id)

    assert excinfo.value.kind == "inconsistent_reference"
    owner = session.scalar(select(Account).where(Account.external_account_id == "acc-1"))
    assert owner.user_id == "alice"


def test_deadline_stops_between_pages():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider([account("acc-1")], three_page_script())
    ticks = iter([0.0, 1.0, 5.0])
    service = SyncService(session, provider, store, "alice", clock=lambda: next(ticks))

    with pytest.raises(SyncFailed) as excinfo:
        service.sync_link(link.id, deadline=2.0)

    assert excinfo.value.kind == "deadline_exceeded"
    assert excinfo.value.retryable is True
    assert excinfo.value.stats.added == 2
    assert provider.requested_cursors == [None]
    assert LedgerStore(session, "alice").get_link(link.id).cursor == "c1"


def test_sync_all_links_continues_past_failures():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    broken = make_link(session, store, external_id="item-1", token="token-1")
    healthy = make_link(session, store, external_id="item-2", token="token-2")
    provider = ProviderByCredential(
        {
            "token-1": ScriptedProvider(
                [account("acc-1")],
                {None: page("a1", added=[txn("t1")], has_more=True)},
                failures={"a1": ProviderUnavailable("rate limited")},
            ),
            "token-2": ScriptedProvider(
                [account("acc-2")],
                {
                    None: page(
                        "b1",
                        added=[
                            txn("t2", account_id="acc-2"),
                            txn("t3", account_id="acc-2"),
                        ],
                    )
                },
            ),
        }
    )

    summary = SyncService(session, provider, store, "alice").sync_all_links()

    assert summary.synced_links == 1
    assert summary.total_added == 3
    assert [(f.link_id, f.kind) for f in summary.failures] == [
        (broken.id, "provider_unavailable")
    ]
    assert summary.failures[0].stats.added == 1
    assert LedgerStore(session, "alice").get_link(healthy.id).cursor == "b1"
    assert set(ledger_state(session)) == {"t1", "t2", "t3"}


def test_raw_payload_is_kept_as_json():
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    link = make_link(session, store)
    provider = ScriptedProvider(
        [account("acc-1")],
        {None: page("c1", added=[txn("t1", raw={"b": 1, "a": date(2026, 9, 1)})])},
    )

    SyncService(session, provider, store, "alice").sync_link(link.id)

    row = session.scalar(select(Transaction))
    assert row.raw_json == '{"a": "2026-09-01", "b": 1}'


def test_ledger_error_fails_one_link_and_batch_continues(monkeypatch):
    session = make_session()
    store = AesGcmCredentialStore(TOKEN_KEY)
    broken = make_link(session, store, external_id="item-1", token="token-1")
    healthy = make_link(session, store, external_id="item-2", token="token-2")
    provider = ProviderByCredential(
        {
            "token-1": ScriptedProvider(
                [account("acc-1")], {None: page("a1", added=[txn("bad")])}
            ),
            "token-2": ScriptedProvider(
                [account("acc-2")],
                {None: page("b1", added=[txn("good", account_id="acc-2")])},
            ),
        }
    )
    service = SyncService(session, provider, store, "alice")
    upsert = service.ledger.upsert_transaction

    def failing_upsert(link, acct, snapshot):
        if snapshot.transaction_id == "bad":
            raise IntegrityError("INSERT INTO transactions", {}, Exception("constraint"))
        return upsert(link, acct, snapshot)

    monkeypatch.setattr(service.ledger, "upsert_transaction", failing_upsert)

    summary = service.sync_all_links()

    assert summary.synced_links == 1
    assert [(f.link_id, f.kind) for f in summary.failures] == [(broken.id, "ledger_error")]
    assert LedgerStore(session, "alice").get_link(broken.id).cursor is None
    assert LedgerStore(session, "alice").get_link(healthy.id).cursor == "b1"
    assert set(ledger_state(session)) == {"good"}
