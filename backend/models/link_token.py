"""LinkToken and LinkSession models - one Plaid Link attempt and its sessions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class LinkToken(Base):
    """A Plaid link token issued to a client.

    Created ``pending`` when the client starts linking, marked ``used``
    once a successful session has been reconciled.  A token is never
    reused; a later session-finished webhook for a used token is a
    logical duplicate.
    """

    __tablename__ = "link_tokens"

    link_token = Column(String, primary_key=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False, index=True)
    item_id = Column(String(36), ForeignKey("items.id"), nullable=True)  # update-mode target
    hosted_link_url = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="pending")  # "pending" | "used"
    used_at = Column(DateTime, nullable=True)

    link_session_id = Column(String, nullable=True)
    last_session_status = Column(String, nullable=True)
    last_session_error_code = Column(String, nullable=True)
    last_session_error_message = Column(String, nullable=True)
    attempt_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utc_now)

    # Relationships
    client = relationship("Client")
    sessions = relationship("LinkSession", back_populates="token")


class LinkSession(Base):
    """History row for each session-finished delivery of a link token."""

    __tablename__ = "link_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    link_token = Column(
        String, ForeignKey("link_tokens.link_token", ondelete="CASCADE"), nullable=False, index=True
    )
    link_session_id = Column(String, nullable=True)
    status = Column(String, nullable=True)
    error_type = Column(String, nullable=True)
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    token = relationship("LinkToken", back_populates="sessions")
