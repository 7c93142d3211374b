"""
Concurrent ownership share replacement against one file-backed database.

Validates:
- Two replacements racing on one asset with the same expected version:
  exactly one lands, the other is a concurrency conflict
- No update is lost or merged: the open share set is the winner's and
  sums to 100 at every instant
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import select

from billing_kernel.db.engine import make_session_factory, session_scope
from billing_modules.ownership.models import AssetType, ShareInput
from billing_modules.ownership.orm import OwnershipShareModel, PropertyAssetModel
from billing_services.billing_engine import ErrorKind

pytestmark = pytest.mark.slow

SINCE = datetime(2026, 1, 1, tzinfo=timezone.utc)
REPLACED_FROM = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(file_db_engine):
    return make_session_factory(file_db_engine)


def _race(*calls):
    barrier = Barrier(len(calls))

    def _run(call):
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


def _asset_version(session_factory, asset_id):
    with session_scope(session_factory) as s:
        return s.execute(
            select(PropertyAssetModel.version).where(PropertyAssetModel.id == asset_id)
        ).scalar_one()


def _open_shares(session_factory, asset_id):
    with session_scope(session_factory) as s:
        return {
            row.owner_id: row.share_percent
            for row in s.execute(
                select(OwnershipShareModel)
                .where(OwnershipShareModel.asset_id == asset_id)
                .where(OwnershipShareModel.effective_to.is_(None))
            ).scalars()
        }


class TestConcurrentShareReplacement:

    def test_one_writer_wins(self, engine, seed, session_factory):
        unit_id = seed.asset(AssetType.UNIT)
        engine.set_ownership_shares(
            unit_id, [ShareInput(uuid4(), Decimal("100"))], SINCE
        ).unwrap()
        version = _asset_version(session_factory, unit_id)

        first = [ShareInput(uuid4(), Decimal("60")), ShareInput(uuid4(), Decimal("40"))]
        second = [ShareInput(uuid4(), Decimal("25")), ShareInput(uuid4(), Decimal("75"))]

        results = _race(
            lambda: engine.set_ownership_shares(
                unit_id, first, REPLACED_FROM, expected_version=version
            ),
            lambda: engine.set_ownership_shares(
                unit_id, second, REPLACED_FROM, expected_version=version
            ),
        )

        assert sum(r.ok for r in results) == 1
        loser = next(r for r in results if not r.ok)
        assert loser.error_kind is ErrorKind.CONCURRENCY_CONFLICT

        winner = first if results[0].ok else second
        assert _open_shares(session_factory, unit_id) == {
            s.owner_id: s.share_percent for s in winner
        }
        assert _asset_version(session_factory, unit_id) != version

    def test_shares_sum_to_100_at_every_instant(self, engine, seed, session_factory):
        unit_id = seed.asset(AssetType.UNIT)
        engine.set_ownership_shares(
            unit_id, [ShareInput(uuid4(), Decimal("100"))], SINCE
        ).unwrap()
        version = _asset_version(session_factory, unit_id)

        _race(*[
            (lambda: engine.set_ownership_shares(
                unit_id,
                [ShareInput(uuid4(), Decimal("50")), ShareInput(uuid4(), Decimal("50"))],
                REPLACED_FROM,
                expected_version=version,
            ))
            for _ in range(3)
        ])

        for as_of in (
            date(2026, 1, 15),
            datetime(2026, 2, 28, 23, 59, 59, 999999, tzinfo=timezone.utc),
            REPLACED_FROM,
            date(2026, 6, 1),
        ):
            shares = engine.resolve_ownership(unit_id, as_of).unwrap()
            assert sum(s.share_percent for s in shares) == Decimal("100")
        assert sum(_open_shares(session_factory, unit_id).values()) == Decimal("100")
