from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.sql import func

from .db import Base


class ScratchGame(Base):
    __tablename__ = "games"
    __table_args__ = (
        # Natural key, not unique: re-listed games can share a triple.
        Index("ix_games_natural_key", "game_number", "state", "top_prize"),
    )

    id = Column(Integer, primary_key=True, index=True)
    game_number = Column(String, nullable=False)
    game_name = Column(String, nullable=False)
    state = Column(String, nullable=False, index=True)
    price = Column(Float, nullable=False, default=0.0)
    top_prize = Column(Float, nullable=False, default=0.0)
    top_prizes_remaining = Column(Integer, nullable=False, default=0)
    total_top_prizes = Column(Integer, nullable=False, default=0)
    overall_odds = Column(String, nullable=True)
    start_date = Column(String, nullable=True)          # passthrough, not validated
    end_date = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    image_converted = Column(Boolean, nullable=False, default=False)
    original_image_url = Column(String, nullable=True)  # set by image conversion, not by imports
    rank = Column(Integer, nullable=False, default=0)   # 0 until the rank recompute runs
    source = Column(String, nullable=True)
    source_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class ImportLog(Base):
    __tablename__ = "import_logs"

    id = Column(Integer, primary_key=True, index=True)
    source_url = Column(Text, nullable=False, default="")
    import_date = Column(DateTime(timezone=True), server_default=func.now())
    status = Column(String, nullable=False)             # success | partial | failed
    records_processed = Column(Integer, nullable=False, default=0)
    records_inserted = Column(Integer, nullable=False, default=0)
    records_updated = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    details_json = Column(Text, nullable=False, default="{}")


class ImportSchedule(Base):
    __tablename__ = "import_schedule"

    id = Column(Integer, primary_key=True, index=True)
    enabled = Column(Boolean, nullable=False, default=False)
    csv_url = Column(Text, nullable=False, default="")
    scheduled_time = Column(String, nullable=False, default="06:00")  # HH:MM UTC
    # idle | running | importing | completed | failed
    status = Column(String, nullable=False, default="idle")
    current_offset = Column(Integer, nullable=False, default=0)
    total_rows = Column(Integer, nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class AppSettings(Base):
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True)
    source_auth_token_enc = Column(Text, nullable=True)
    import_batch_size = Column(Integer, nullable=False, default=10)
    import_chunk_size = Column(Integer, nullable=False, default=200)
    updated_at_utc = Column(DateTime(timezone=True), server_default=func.now())
