"""SQLite ledger for creators, memes and tips.

Replay protection lives here: ``tips.tx_hash`` is UNIQUE, so a settlement
transaction can be recorded at most once even when two requests pass the
pre-check concurrently. ``payment_nonces`` stops the same signed
authorization from being sent to settlement twice.
"""

import asyncio
import sqlite3
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import aiosqlite

from .config import config
from .logging_utils import get_logger
from .models import Creator, Meme, Tip

logger = get_logger(__name__)

# SQL Schema
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS creators (
    wallet_address TEXT PRIMARY KEY,
    username TEXT,
    created_at TEXT NOT NULL,
    total_memes INTEGER NOT NULL DEFAULT 0,
    total_tips INTEGER NOT NULL DEFAULT 0,
    total_earned TEXT NOT NULL DEFAULT '0'
);

CREATE TABLE IF NOT EXISTS memes (
    id TEXT PRIMARY KEY,
    creator_wallet TEXT NOT NULL,
    image_url TEXT NOT NULL,
    caption TEXT,
    category TEXT NOT NULL DEFAULT 'general',
    created_at TEXT NOT NULL,
    tip_count INTEGER NOT NULL DEFAULT 0,
    total_earned TEXT NOT NULL DEFAULT '0',
    view_count INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (creator_wallet) REFERENCES creators(wallet_address)
);

-- tx_hash UNIQUE is the authoritative replay guard
CREATE TABLE IF NOT EXISTS tips (
    id TEXT PRIMARY KEY,
    meme_id TEXT NOT NULL,
    from_wallet TEXT NOT NULL,
    to_wallet TEXT NOT NULL,
    amount TEXT NOT NULL,
    platform_fee TEXT NOT NULL,
    tx_hash TEXT NOT NULL UNIQUE,
    simulated INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    FOREIGN KEY (meme_id) REFERENCES memes(id)
);

CREATE TABLE IF NOT EXISTS payment_nonces (
    payer TEXT NOT NULL,
    nonce TEXT NOT NULL,
    claimed_at TEXT NOT NULL,
    PRIMARY KEY (payer, nonce)
);

CREATE INDEX IF NOT EXISTS idx_memes_created_at ON memes(created_at);
CREATE INDEX IF NOT EXISTS idx_tips_meme_id ON tips(meme_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_creator(row) -> Creator:
    return Creator(
        wallet_address=row["wallet_address"],
        username=row["username"],
        created_at=datetime.fromisoformat(row["created_at"]),
        total_memes=row["total_memes"],
        total_tips=row["total_tips"],
        total_earned=Decimal(row["total_earned"]),
    )


def _row_to_meme(row) -> Meme:
    return Meme(
        id=row["id"],
        creator_wallet=row["creator_wallet"],
        image_url=row["image_url"],
        caption=row["caption"],
        category=row["category"],
        created_at=datetime.fromisoformat(row["created_at"]),
        tip_count=row["tip_count"],
        total_earned=Decimal(row["total_earned"]),
        view_count=row["view_count"],
    )


def _row_to_tip(row) -> Tip:
    return Tip(
        id=row["id"],
        meme_id=row["meme_id"],
        from_wallet=row["from_wallet"],
        to_wallet=row["to_wallet"],
        amount=Decimal(row["amount"]),
        platform_fee=Decimal(row["platform_fee"]),
        tx_hash=row["tx_hash"],
        simulated=bool(row["simulated"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class Database:
    """Async database interface for the tip ledger."""

    def __init__(self, db_path: str = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. Defaults to config.database_path.
        """
        self.db_path = db_path or config.database_path
        # Serializes read-modify-write of decimal totals
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.executescript(SCHEMA_SQL)
            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # Creator operations
    async def get_creator(self, wallet_address: str) -> Optional[Creator]:
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM creators WHERE wallet_address = ?",
                (wallet_address,),
            )
            row = await cursor.fetchone()
            return _row_to_creator(row) if row else None

    async def get_or_create_creator(self, wallet_address: str) -> Creator:
        """Return the creator for a wallet, registering it on first use."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT OR IGNORE INTO creators (wallet_address, username, created_at)
                VALUES (?, ?, ?)
                """,
                (wallet_address, f"user_{wallet_address[2:8]}", _now()),
            )
            await db.commit()
        return await self.get_creator(wallet_address)

    # Meme operations
    async def create_meme(
        self,
        creator_wallet: str,
        image_url: str,
        caption: Optional[str] = None,
        category: str = "general",
    ) -> Meme:
        """Create a meme and bump the creator's meme count.

        Args:
            creator_wallet: Wallet of the creator; registered if new.
            image_url: Hosted image URL.
            caption: Optional caption.
            category: Feed category.

        Returns:
            The stored meme.
        """
        await self.get_or_create_creator(creator_wallet)
        meme = Meme(
            id=str(uuid.uuid4()),
            creator_wallet=creator_wallet,
            image_url=image_url,
            caption=caption,
            category=category,
        )
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO memes
                (id, creator_wallet, image_url, caption, category, created_at,
                 tip_count, total_earned, view_count)
                VALUES (?, ?, ?, ?, ?, ?, 0, '0', 0)
                """,
                (
                    meme.id,
                    meme.creator_wallet,
                    meme.image_url,
                    meme.caption,
                    meme.category,
                    meme.created_at.isoformat(),
                ),
            )
            await db.execute(
                "UPDATE creators SET total_memes = total_memes + 1 WHERE wallet_address = ?",
                (creator_wallet,),
            )
            await db.commit()
        logger.info(f"Created meme {meme.id} for {creator_wallet}")
        return meme

    async def get_memes(self, limit: int = 20, offset: int = 0) -> List[Meme]:
        """Return the meme feed, newest first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM memes ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cursor.fetchall()
            return [_row_to_meme(row) for row in rows]

    async def get_meme(self, meme_id: str) -> Optional[Meme]:
        """Look up a meme by id; None if not found."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM memes WHERE id = ?", (meme_id,))
            row = await cursor.fetchone()
            return _row_to_meme(row) if row else None

    async def increment_meme_views(self, meme_id: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE memes SET view_count = view_count + 1 WHERE id = ?",
                (meme_id,),
            )
            await db.commit()

    # Tip operations
    async def tx_hash_exists(self, tx_hash: str) -> bool:
        """Pre-check for a recorded transaction hash.

        Only an early exit; create_tip's UNIQUE constraint is authoritative.
        """
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1 FROM tips WHERE tx_hash = ?", (tx_hash,))
            return await cursor.fetchone() is not None

    async def create_tip(
        self,
        meme_id: str,
        from_wallet: str,
        to_wallet: str,
        amount: Decimal,
        platform_fee: Decimal,
        tx_hash: str,
        simulated: bool = False,
    ) -> Optional[Tip]:
        """Record a tip and update meme and creator stats atomically.

        Args:
            meme_id: Meme being tipped.
            from_wallet: Verified payer.
            to_wallet: Creator wallet.
            amount: Amount credited to the creator.
            platform_fee: Fee retained by the platform.
            tx_hash: Settlement transaction hash.
            simulated: Whether the settlement was simulated.

        Returns:
            The stored Tip, or None if ``tx_hash`` was already recorded.
        """
        tip = Tip(
            id=str(uuid.uuid4()),
            meme_id=meme_id,
            from_wallet=from_wallet,
            to_wallet=to_wallet,
            amount=amount,
            platform_fee=platform_fee,
            tx_hash=tx_hash,
            simulated=simulated,
        )
        async with self._lock:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                try:
                    await db.execute(
                        """
                        INSERT INTO tips
                        (id, meme_id, from_wallet, to_wallet, amount, platform_fee,
                         tx_hash, simulated, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            tip.id,
                            tip.meme_id,
                            tip.from_wallet,
                            tip.to_wallet,
                            str(tip.amount),
                            str(tip.platform_fee),
                            tip.tx_hash,
                            1 if tip.simulated else 0,
                            tip.created_at.isoformat(),
                        ),
                    )
                except sqlite3.IntegrityError:
                    await db.rollback()
                    logger.warning(f"Transaction already recorded (replay): {tx_hash}")
                    return None

                cursor = await db.execute("SELECT total_earned FROM memes WHERE id = ?", (meme_id,))
                row = await cursor.fetchone()
                if row:
                    await db.execute(
                        "UPDATE memes SET tip_count = tip_count + 1, total_earned = ? WHERE id = ?",
                        (str(Decimal(row["total_earned"]) + amount), meme_id),
                    )

                cursor = await db.execute(
                    "SELECT total_earned FROM creators WHERE wallet_address = ?", (to_wallet,)
                )
                row = await cursor.fetchone()
                if row:
                    await db.execute(
                        """
                        UPDATE creators SET total_tips = total_tips + 1, total_earned = ?
                        WHERE wallet_address = ?
                        """,
                        (str(Decimal(row["total_earned"]) + amount), to_wallet),
                    )

                await db.commit()
        logger.info(f"Created tip {tip.id} for meme {meme_id}, tx {tx_hash}")
        return tip

    async def get_tips_by_meme(self, meme_id: str) -> List[Tip]:
        """Return a meme's tips, newest first."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM tips WHERE meme_id = ? ORDER BY created_at DESC, rowid DESC",
                (meme_id,),
            )
            rows = await cursor.fetchall()
            return [_row_to_tip(row) for row in rows]

    # Authorization nonce operations (pre-settlement replay guard)
    async def claim_payment_nonce(self, payer: str, nonce: str) -> bool:
        """Claim an authorization nonce for a payer.

        Returns:
            True if this call claimed it, False if it was claimed before.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO payment_nonces (payer, nonce, claimed_at) VALUES (?, ?, ?)",
                    (payer, nonce, _now()),
                )
                await db.commit()
            return True
        except sqlite3.IntegrityError:
            logger.warning(f"Authorization nonce already used by {payer}: {nonce}")
            return False

