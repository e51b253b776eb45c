"""Client model - a practice's customer whose bank accounts are linked."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now

# Worst-first ordering used to summarize the status of a client's Items.
_STATUS_SEVERITY = ("error", "login_required", "needs_update", "active")


class Client(Base):
    """A practice client.

    Clients are maintained by the practice's own tooling; the sync engine
    only reads them to attach Items and name link sessions.
    """

    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    items = relationship("Item", back_populates="client")

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def sync_status(self) -> str:
        """Summarize the worst status across the client's live Items.

        Returns ``"none"`` when the client has no non-archived Items.
        """
        statuses = {item.status for item in self.items if not item.is_archived}
        for status in _STATUS_SEVERITY:
            if status in statuses:
                return status
        return "none"
