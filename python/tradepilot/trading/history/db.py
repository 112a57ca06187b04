"""SQLAlchemy tables backing the performance tracker."""

from pathlib import Path

from sqlalchemy import Column, Float, Index, Integer, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


class TradeRow(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trader_id = Column(String(100), nullable=False, index=True)
    symbol = Column(String(50), nullable=False)
    side = Column(String(10), nullable=False)
    # symbol_side keeps LONG and SHORT legs of one symbol apart
    symbol_side = Column(String(64), nullable=False, index=True)
    entry_price = Column(Float, nullable=False)
    quantity = Column(Float, nullable=False)
    leverage = Column(Float, nullable=False, default=1.0)
    open_time = Column(Integer, nullable=False, comment="Open time in ms")
    open_order_id = Column(String(100), nullable=True)
    exit_price = Column(Float, nullable=True)
    close_time = Column(Integer, nullable=True, comment="Close time in ms")
    close_order_id = Column(String(100), nullable=True)
    pnl = Column(Float, nullable=True)
    pnl_percent = Column(Float, nullable=True)
    holding_duration = Column(Integer, nullable=True, comment="Holding time in ms")
    stop_loss = Column(Float, nullable=True)
    take_profit = Column(Float, nullable=True)
    status = Column(String(10), nullable=False, index=True)
    close_reason = Column(Text, nullable=True)
    created_at = Column(Integer, nullable=False)

    def __repr__(self) -> str:
        return (
            "<TradeRow(id={id}, trader_id='{trader_id}', symbol_side='{symbol_side}', "
            "status='{status}', pnl={pnl})>"
        ).format(
            id=self.id,
            trader_id=self.trader_id,
            symbol_side=self.symbol_side,
            status=self.status,
            pnl=self.pnl,
        )


class EquitySnapshotRow(Base):
    __tablename__ = "equity_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trader_id = Column(String(100), nullable=False, index=True)
    timestamp = Column(Integer, nullable=False)
    equity = Column(Float, nullable=False)
    daily_pnl = Column(Float, nullable=False, default=0.0)
    daily_pnl_percent = Column(Float, nullable=False, default=0.0)

    __table_args__ = (Index("idx_equity_trader_ts", "trader_id", "timestamp"),)

    def __repr__(self) -> str:
        return "<EquitySnapshotRow(trader_id='{}', timestamp={}, equity={})>".format(
            self.trader_id, self.timestamp, self.equity
        )


def create_session_factory(database_url: str) -> sessionmaker:
    """Create the engine, ensure tables exist and return a session factory.

    SQLite file databases get their parent directory created; in-memory
    SQLite shares one connection so every session sees the same data.
    """
    url = make_url(database_url)
    kwargs = {}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
