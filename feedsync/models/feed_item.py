# feedsync/models/feed_item.py
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, func

from ..database import Base
from ..core.enums import ItemStatus


class FeedItemRecord(Base):
    """Last synchronized state of one feed item (the local store)."""
    __tablename__ = "feed_items"

    id = Column(Integer, primary_key=True)
    sku = Column(String(64), nullable=False, unique=True, index=True)

    # Sync bookkeeping
    status = Column(String(20), nullable=False, default=ItemStatus.AVAILABLE.value)
    remote_id = Column(String(100), nullable=True, index=True)
    published_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Feed availability
    web_status = Column(String(32), nullable=True)

    # Pricing
    price_retail = Column(String(32))
    price_sale = Column(String(32))
    price_ebay = Column(String(32))
    price_keystone = Column(String(32))
    price_chronos = Column(String(32))
    price_wholesale = Column(String(32))
    cost_invoiced = Column(String(32))

    # Descriptive attributes
    title = Column(String(500))
    style = Column(String(100))
    brand = Column(String(255))
    model = Column(String(255))
    year = Column(String(32))
    material = Column(String(255))
    reference_number = Column(String(255))
    movement = Column(String(255))
    case = Column(String(255))
    dial = Column(String(255))
    strap = Column(String(255))
    condition = Column(String(255))
    diameter = Column(String(64))
    box_papers = Column(String(255))
    category = Column(String(255))
    serial_number = Column(String(255))
    notes = Column(Text)
    internal_notes = Column(Text)

    # Up to nine ordered image references, None for an empty slot
    image_paths = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<FeedItemRecord(sku='{self.sku}', status='{self.status}', remote_id='{self.remote_id}')>"
