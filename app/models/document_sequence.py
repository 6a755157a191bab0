"""
Document Sequence Model for Atomic Number Generation

Calendar-year numbering, continuous within the year:

    GRN-2026-0001   goods receipt
    RTN-2026-0001   product return
    REF-2026-000001 sale refund

The row for (document_type, year) is locked with SELECT FOR UPDATE while
the next number is taken, so concurrent requests never share a number.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class DocumentType(str, Enum):
    """Document types that use sequence numbering."""
    GOODS_RECEIPT = "GRN"
    PRODUCT_RETURN = "RTN"
    SALE_REFUND = "REF"


class DocumentSequence(Base):
    """
    One counter per document type per calendar year.

    Example:
        document_type = "GRN"
        year = 2026
        current_number = 41
        → Next GRN number: GRN-2026-0042
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("document_type", "year", name="uq_document_sequence_type_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    document_type: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Last used sequence number
    current_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Zero padding for sequence (4 = 0001)
    padding_length: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    separator: Mapped[str] = mapped_column(String(5), default="-", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def format_number(self, number: int) -> str:
        seq = str(number).zfill(self.padding_length)
        sep = self.separator
        return f"{self.document_type}{sep}{self.year}{sep}{seq}"

    def get_next_number(self) -> str:
        """
        Increment current_number and format it.

        NOTE: does NOT commit. The caller owns the transaction.
        """
        self.current_number += 1
        return self.format_number(self.current_number)

    def preview_next_number(self) -> str:
        return self.format_number(self.current_number + 1)

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}/{self.year}: {self.current_number})>"
