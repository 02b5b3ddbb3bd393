from sqlalchemy import Column, Integer, String, JSON, DateTime, Boolean
from sqlalchemy.sql import func
from database import Base


class DiscountConfig(Base):
    """
    Stored configuration for the tiered discount.

    configuration: JSON field holding the same payload the discount node
    metafield carries:
        {
            "collectionIds": ["<excluded collection gid>", ...],
            "mapping": [{"collection": "<collection gid>", "threshold": <float>}, ...]
        }
    """
    __tablename__ = "discount_configs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String, nullable=False)
    configuration = Column(JSON, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
