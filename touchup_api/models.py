from sqlalchemy import Column, DateTime, String
from touchup_api.database import Base


class RefSession(Base):
    __tablename__ = "ref_sessions"

    ref = Column(String, primary_key=True)          # reference token minted at issuance
    order_id = Column(String, nullable=True, index=True)
    link_id = Column(String, nullable=True)         # Square payment link id
    created_at = Column(DateTime(timezone=True))
