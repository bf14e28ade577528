from datetime import datetime
from pydantic import BaseModel
from typing import Optional


class GameOut(BaseModel):
    id: int
    game_number: str
    game_name: str
    state: str
    price: float
    top_prize: float
    top_prizes_remaining: int
    total_top_prizes: int
    overall_odds: Optional[str]
    start_date: Optional[str]
    end_date: Optional[str]
    image_url: Optional[str]
    image_converted: bool
    original_image_url: Optional[str]
    rank: int
    source: Optional[str]
    source_url: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ImportLogOut(BaseModel):
    id: int
    source_url: str
    import_date: Optional[datetime]
    status: str
    records_processed: int
    records_inserted: int
    records_updated: int
    records_failed: int
    error_message: Optional[str]
    details: dict


class ImportScheduleOut(BaseModel):
    id: int
    enabled: bool
    csv_url: str
    scheduled_time: str
    status: str
    current_offset: int
    total_rows: Optional[int]
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    error_message: Optional[str]

    class Config:
        from_attributes = True


class SettingsOut(BaseModel):
    import_batch_size: int
    import_chunk_size: int
    has_source_auth_token: bool
