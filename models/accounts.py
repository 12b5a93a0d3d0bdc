from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, UniqueConstraint
from datetime import datetime
from models.base import Base


class NotionAccount(Base):
    """OAuth connection to one Notion workspace"""
    __tablename__ = "notion_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)

    workspace_id = Column(String(100), nullable=False, index=True)
    workspace_name = Column(String(255), nullable=True)
    bot_id = Column(String(100), nullable=True)
    access_token = Column(Text, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class GoogleSheetsAccount(Base):
    """OAuth2 connection to one Google account (access + refresh token)"""
    __tablename__ = "google_sheets_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False, index=True)

    email = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class GoogleSpreadsheet(Base):
    """
    Cached metadata of a spreadsheet visible to a Google account.

    Reconciled by the list-spreadsheets job; natural key is
    (google_sheets_account_id, google_spreadsheet_id).
    """
    __tablename__ = "google_spreadsheets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    google_sheets_account_id = Column(Integer, ForeignKey("google_sheets_accounts.id"), nullable=False)
    google_spreadsheet_id = Column(String(255), nullable=False)

    title = Column(String(500), nullable=False)
    url = Column(String(2048), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("google_sheets_account_id", "google_spreadsheet_id", name="uq_spreadsheet_account"),
        Index("idx_spreadsheet_account", "google_sheets_account_id"),
    )
