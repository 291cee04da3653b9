from datetime import datetime, timedelta, timezone
from decimal import Decimal

from powerpot.db.engine import get_sessionmaker, make_engine
from powerpot.models import Base, Player, Pot, SettlementLock, Ticket
from powerpot.settlement.locking import DEFAULT_LOCK_NAME


def main() -> None:
    """Reset the development database and fill it with a week of ticket sales."""
    engine = make_engine()

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = datetime.now(timezone.utc)
    price = Decimal("0.05")

    with Session.begin() as session:
        Pot.ensure(session)
        session.add(SettlementLock(name=DEFAULT_LOCK_NAME))

        alice = Player(wallet_address="7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU")
        bob = Player(wallet_address="9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM")
        carol = Player(wallet_address="HN7cABqLq46Es1jh92dQQisAq662SmxELLLsHHe4YWrH")
        session.add_all([alice, bob, carol])
        session.flush()

        picks = [
            (alice, [3, 7, 12, 19, 28], 4),
            (alice, [1, 2, 3, 4, 5], 10),
            (bob, [5, 11, 17, 23, 29], 7),
            (bob, [6, 12, 18, 24, 30], 2),
            (carol, [2, 9, 14, 21, 27], 1),
            (carol, [8, 13, 16, 22, 25], 9),
        ]
        for i, (player, numbers, powerball) in enumerate(picks):
            session.add(
                Ticket(
                    numbers=numbers,
                    powerball=powerball,
                    transaction_hash=f"dev-purchase-{i:04d}",
                    player=player,
                    created_at=now - timedelta(days=i),
                )
            )
        session.flush()
        Pot.record_ticket_sale(session, price, count=len(picks))
        # Carry-over from earlier cycles so tiers have something to split.
        Pot.adjust_balance(session, Decimal("12.5"))

    print("Development database seeded.")


if __name__ == "__main__":
    main()
