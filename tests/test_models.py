import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from powerpot.models import Base, Draw, PayoutStatus, Player, Ticket, WinRecord


class DBTestCase(unittest.TestCase):
    def setUp(self):
        # In-memory SQLite for isolation
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def make_ticket(self, session, wallet="Wallet1", numbers=(5, 1, 3, 2, 4), powerball=7):
        player = Player.get_by_wallet(session, wallet)
        if player is None:
            player = Player(wallet_address=wallet)
            session.add(player)
        ticket = Ticket(
            numbers=list(numbers),
            powerball=powerball,
            transaction_hash="tx-1",
            player=player,
        )
        session.add(ticket)
        session.flush()
        return ticket

    def test_player_wallet_is_stripped(self):
        with self.Session() as session:
            session.add(Player(wallet_address="  Wallet1 \n"))
            session.commit()
            player = Player.get_by_wallet(session, "Wallet1 ")
            self.assertIsNotNone(player)
            self.assertEqual(player.wallet_address, "Wallet1")

    def test_player_wallet_required(self):
        with self.assertRaises(ValueError):
            Player(wallet_address="   ")

    def test_duplicate_wallet_rejected(self):
        with self.Session() as session:
            session.add_all([Player(wallet_address="W"), Player(wallet_address="W")])
            with self.assertRaises(IntegrityError):
                session.commit()

    def test_ticket_numbers_sorted(self):
        with self.Session() as session:
            ticket = self.make_ticket(session)
            session.commit()
            stored = session.scalars(select(Ticket)).one()
            self.assertEqual(stored.numbers, [1, 2, 3, 4, 5])
            self.assertEqual(stored.powerball, 7)
            self.assertIsNotNone(ticket.created_at)

    def test_ticket_validation(self):
        bad_picks = [
            ([1, 2, 3, 4], 1, ValueError),
            ([1, 2, 3, 4, 4], 1, ValueError),
            ([0, 2, 3, 4, 5], 1, ValueError),
            ([1, 2, 3, 4, 31], 1, ValueError),
            ([1, 2, 3, 4, "5"], 1, TypeError),
            ([1, 2, 3, 4, True], 1, TypeError),
            ([1, 2, 3, 4, 5], 0, ValueError),
            ([1, 2, 3, 4, 5], 11, ValueError),
            ([1, 2, 3, 4, 5], 2.0, TypeError),
        ]
        for numbers, powerball, error in bad_picks:
            with self.subTest(numbers=numbers, powerball=powerball):
                with self.assertRaises(error):
                    Ticket(numbers=numbers, powerball=powerball, transaction_hash="tx")

    def test_tickets_may_share_transaction_hash(self):
        with self.Session() as session:
            self.make_ticket(session)
            self.make_ticket(session, numbers=(6, 7, 8, 9, 10))
            session.commit()
            self.assertEqual(len(session.scalars(select(Ticket)).all()), 2)

    def test_draw_latest(self):
        now = datetime.now(timezone.utc)
        with self.Session() as session:
            self.assertIsNone(Draw.latest(session))
            session.add_all(
                [
                    Draw(winning_numbers=[1, 2, 3, 4, 5], powerball=1, drawn_at=now - timedelta(days=7)),
                    Draw(winning_numbers=[9, 8, 7, 6, 5], powerball=2, drawn_at=now),
                ]
            )
            session.commit()
            latest = Draw.latest(session)
            self.assertEqual(latest.winning_numbers, [5, 6, 7, 8, 9])

    def test_win_record_unique_per_ticket_and_draw(self):
        with self.Session() as session:
            ticket = self.make_ticket(session)
            draw = Draw(winning_numbers=[1, 2, 3, 4, 5], powerball=7)
            session.add(draw)
            session.flush()
            for _ in range(2):
                session.add(
                    WinRecord(
                        ticket_id=ticket.id,
                        draw_id=draw.id,
                        match_count=5,
                        powerball_match=True,
                        tier=1,
                        prize_amount=Decimal("1"),
                    )
                )
            with self.assertRaises(IntegrityError):
                session.flush()

    def test_win_record_defaults(self):
        with self.Session() as session:
            ticket = self.make_ticket(session)
            draw = Draw(winning_numbers=[1, 2, 3, 4, 5], powerball=7)
            session.add(draw)
            session.flush()
            record = WinRecord(
                ticket_id=ticket.id,
                draw_id=draw.id,
                match_count=5,
                powerball_match=True,
                tier=1,
                prize_amount=Decimal("0"),
            )
            session.add(record)
            session.commit()
            self.assertFalse(record.disbursed)
            self.assertEqual(record.payout_status, PayoutStatus.PENDING)
            self.assertEqual(record.attempts, 0)

    def test_win_record_rejects_unknown_status(self):
        with self.Session() as session:
            ticket = self.make_ticket(session)
            draw = Draw(winning_numbers=[1, 2, 3, 4, 5], powerball=7)
            session.add(draw)
            session.flush()
            session.add(
                WinRecord(
                    ticket_id=ticket.id,
                    draw_id=draw.id,
                    match_count=5,
                    powerball_match=True,
                    tier=1,
                    prize_amount=Decimal("1"),
                    payout_status="lost",
                )
            )
            with self.assertRaises(IntegrityError):
                session.flush()


if __name__ == "__main__":
    unittest.main()
