"""
Product Model
"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from app.db.database import Base, Money, utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Money, nullable=False, default=0)
    base_currency = Column(String(3), nullable=False, default="SAR")
    purchase_price = Column(Money, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    investments = relationship(
        "Investment", lazy="selectin", viewonly=True, order_by="Investment.id"
    )

    def has_active_investment(self, country: str | None = None) -> bool:
        """True when an active stake covers ``country`` (unscoped stakes cover all)"""
        return any(
            inv.is_active and inv.country in (None, country)
            for inv in self.investments
        )
