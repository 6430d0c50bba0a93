from sqlalchemy import Column, Integer, Text, text
from sqlalchemy.orm import declarative_base

Base = declarative_base()
metadata = Base.metadata


class AvailabilitySettingsRow(Base):
    __tablename__ = 'availability_settings'

    id = Column(Integer, primary_key=True)
    business_hours = Column(Text, nullable=False, server_default=text("'{}'"))
    blocked_dates = Column(Text, nullable=False, server_default=text("'[]'"))
    blocked_time_slots = Column(Text, nullable=False, server_default=text("'[]'"))
    advance_booking_days = Column(Integer, nullable=False, server_default=text('14'))
    slot_duration = Column(Integer, nullable=False, server_default=text('30'))
    buffer_time = Column(Integer, nullable=False, server_default=text('0'))
    max_slots_per_day = Column(Integer)
    timezone = Column(Text, nullable=False, server_default=text("'America/Los_Angeles'"))
    created_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
    updated_at = Column(Text, server_default=text('CURRENT_TIMESTAMP'))
