import os
import shutil
import tempfile
import threading
import time
import unittest
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from powerpot.blockchain.sender import TransferResult
from powerpot.db.engine import get_sessionmaker, make_engine
from powerpot.models import Base, Player, Ticket
from powerpot.settlement.draw_generator import DrawGenerator, DrawNumbers
from powerpot.settlement.locking import DEFAULT_LOCK_NAME
from powerpot.settlement.store import SettlementStore

TREASURY = "TreasuryWa11et1111111111111111111111111111"


class DummySender:
    """In-memory payment sender recording every call."""

    def __init__(
        self,
        balance: Decimal = Decimal("1000"),
        *,
        fail_for=(),
        timeout_for=(),
        raise_for=(),
        delay: float = 0.0,
    ):
        self.balance = Decimal(balance)
        self.fail_for = set(fail_for)
        self.timeout_for = set(timeout_for)
        self.raise_for = set(raise_for)
        self.delay = delay
        self.balance_calls = 0
        self.transfers: list[dict] = []
        self.max_concurrent = 0
        self._active = 0
        self._lock = threading.Lock()

    def get_balance(self, account: str) -> Decimal:
        self.balance_calls += 1
        return self.balance

    def transfer(
        self,
        from_account: str,
        to_account: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> TransferResult:
        with self._lock:
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)
            self.transfers.append(
                {
                    "from": from_account,
                    "to": to_account,
                    "amount": Decimal(amount),
                    "idempotency_key": idempotency_key,
                    "timeout": timeout,
                }
            )
        try:
            if self.delay:
                time.sleep(self.delay)
            if to_account in self.raise_for:
                raise ConnectionError("RPC node unreachable")
            if to_account in self.timeout_for:
                return TransferResult(success=False, error="deadline exceeded", timed_out=True)
            if to_account in self.fail_for:
                return TransferResult(success=False, error="destination account rejected")
            return TransferResult(success=True, reference=f"sig-{idempotency_key}")
        finally:
            with self._lock:
                self._active -= 1

    def paid_to(self, wallet: str) -> int:
        return sum(1 for t in self.transfers if t["to"] == wallet)


class FixedGenerator(DrawGenerator):
    """Always draws the same combination."""

    def __init__(self, numbers, powerball):
        super().__init__()
        self._fixed = DrawNumbers(numbers=tuple(sorted(numbers)), powerball=powerball)

    def pick(self) -> DrawNumbers:
        return self._fixed


class FileDatabaseTestCase(unittest.TestCase):
    """Fresh SQLite file per test so worker threads share the same data."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="powerpot-test-")
        path = os.path.join(self.tmpdir, "test.db")
        self.engine = make_engine(f"sqlite:///{path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        self.store = SettlementStore(self.Session)
        self.store.bootstrap(lock_name=DEFAULT_LOCK_NAME)

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def add_ticket(
        self,
        wallet: str,
        numbers,
        powerball: int,
        *,
        created_at: Optional[datetime] = None,
    ) -> int:
        with self.Session.begin() as session:
            player = Player.get_by_wallet(session, wallet)
            if player is None:
                player = Player(wallet_address=wallet)
                session.add(player)
            ticket = Ticket(
                numbers=list(numbers),
                powerball=powerball,
                transaction_hash=f"tx-{uuid.uuid4().hex}",
                player=player,
                created_at=created_at,
            )
            session.add(ticket)
            session.flush()
            return ticket.id

    def fund_pot(self, amount) -> None:
        self.store.update_pot_balance(Decimal(str(amount)))
