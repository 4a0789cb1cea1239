"""Unit tests for replay protection in the tip ledger."""

import asyncio
from decimal import Decimal

import pytest

from src.database import Database

CREATOR = "0xAbCdEf0000000000000000000000000000000001"
TIPPER = "0x1111111111111111111111111111111111111111"


@pytest.mark.unit
class TestAntiReplay:
    """A settlement transaction hash can be recorded at most once."""

    @pytest.fixture
    async def test_db(self, tmp_path):
        """Create a temporary test database."""
        db_path = tmp_path / "test.db"
        db = Database(str(db_path))
        await db.initialize()
        return db

    @pytest.fixture
    async def meme(self, test_db):
        return await test_db.create_meme(CREATOR, "https://img.test/cat.png", caption="cat")

    async def record(self, db, meme, tx_hash):
        return await db.create_tip(
            meme_id=meme.id,
            from_wallet=TIPPER,
            to_wallet=CREATOR,
            amount=Decimal("0.095"),
            platform_fee=Decimal("0.005"),
            tx_hash=tx_hash,
        )

    async def test_duplicate_tx_hash_rejected(self, test_db, meme):
        assert not await test_db.tx_hash_exists("0xaaa")

        first = await self.record(test_db, meme, "0xaaa")
        assert first is not None
        assert await test_db.tx_hash_exists("0xaaa")

        second = await self.record(test_db, meme, "0xaaa")
        assert second is None

        tips = await test_db.get_tips_by_meme(meme.id)
        assert len(tips) == 1

    async def test_concurrent_duplicates_record_once(self, test_db, meme):
        results = await asyncio.gather(*(self.record(test_db, meme, "0xbbb") for _ in range(5)))

        assert sum(1 for r in results if r is not None) == 1
        assert len(await test_db.get_tips_by_meme(meme.id)) == 1

    async def test_duplicate_does_not_change_stats(self, test_db, meme):
        await self.record(test_db, meme, "0xccc")
        await self.record(test_db, meme, "0xccc")

        stored = await test_db.get_meme(meme.id)
        creator = await test_db.get_creator(CREATOR)
        assert stored.tip_count == 1
        assert stored.total_earned == Decimal("0.095")
        assert creator.total_tips == 1
        assert creator.total_earned == Decimal("0.095")

    async def test_distinct_hashes_independent(self, test_db, meme):
        await self.record(test_db, meme, "0x001")
        await self.record(test_db, meme, "0x002")

        stored = await test_db.get_meme(meme.id)
        assert stored.tip_count == 2
        assert stored.total_earned == Decimal("0.190")
        assert {t.tx_hash for t in await test_db.get_tips_by_meme(meme.id)} == {"0x001", "0x002"}

    async def test_payment_nonce_claimed_once(self, test_db):
        assert await test_db.claim_payment_nonce(TIPPER.lower(), "0x01") is True
        assert await test_db.claim_payment_nonce(TIPPER.lower(), "0x01") is False
        # Same nonce from another payer is a different authorization
        assert await test_db.claim_payment_nonce(CREATOR.lower(), "0x01") is True


@pytest.mark.unit
class TestLedger:

    @pytest.fixture
    async def test_db(self, tmp_path):
        db = Database(str(tmp_path / "ledger.db"))
        await db.initialize()
        return db

    async def test_create_meme_registers_creator(self, test_db):
        await test_db.create_meme(CREATOR, "https://img.test/1.png")
        await test_db.create_meme(CREATOR, "https://img.test/2.png")

        creator = await test_db.get_creator(CREATOR)
        assert creator.total_memes == 2
        assert creator.username == f"user_{CREATOR[2:8]}"

    async def test_feed_newest_first_with_paging(self, test_db):
        ids = [(await test_db.create_meme(CREATOR, f"https://img.test/{i}.png")).id for i in range(3)]

        feed = await test_db.get_memes(limit=2, offset=0)
        assert [m.id for m in feed] == [ids[2], ids[1]]
        assert [m.id for m in await test_db.get_memes(limit=2, offset=2)] == [ids[0]]

    async def test_missing_meme(self, test_db):
        assert await test_db.get_meme("does-not-exist") is None

    async def test_view_count(self, test_db):
        meme = await test_db.create_meme(CREATOR, "https://img.test/v.png")
        await test_db.increment_meme_views(meme.id)
        assert (await test_db.get_meme(meme.id)).view_count == 1
