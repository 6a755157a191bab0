"""
Document Sequence Service for Atomic Number Generation

Calendar-year numbering with database-level locking:

    GRN-2026-0001    goods receipts
    RTN-2026-0001    product returns
    REF-2026-000001  sale refunds

USAGE:
    service = DocumentSequenceService(db)
    receipt_number = await service.get_next_number(DocumentType.GOODS_RECEIPT)

The increment is flushed, not committed; the number belongs to the
caller's transaction and is released again if that transaction rolls back.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.document_sequence import DocumentSequence, DocumentType
from app.services.transaction import insert_if_missing


logger = logging.getLogger(__name__)


# Document type metadata
DOCUMENT_METADATA = {
    DocumentType.GOODS_RECEIPT: {"name": "Goods Receipt Note", "padding": 4},
    DocumentType.PRODUCT_RETURN: {"name": "Product Return", "padding": 4},
    DocumentType.SALE_REFUND: {"name": "Sale Refund", "padding": 6},
}


class DocumentSequenceService:
    """
    Service for generating atomic document numbers.

    Uses SELECT FOR UPDATE on the (type, year) row so no duplicate numbers
    are generated under concurrent load.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_next_number(
        self,
        document_type: Union[DocumentType, str],
        year: Optional[int] = None
    ) -> str:
        """
        Get next document number with atomic increment.

        Args:
            document_type: DocumentType or its code (GRN, RTN, REF)
            year: Calendar year. Current UTC year if not provided.

        Returns:
            Formatted document number, e.g., GRN-2026-0001

        Raises:
            ValueError: If document_type is invalid
        """
        doc_type = self._normalize_type(document_type)
        year = year or datetime.now(timezone.utc).year

        sequence = await self._get_or_create_sequence(doc_type, year)
        doc_number = sequence.get_next_number()
        await self.db.flush()

        logger.debug("Generated %s", doc_number)
        return doc_number

    async def preview_next_number(
        self,
        document_type: Union[DocumentType, str],
        year: Optional[int] = None
    ) -> str:
        """Preview the next number without incrementing or locking."""
        doc_type = self._normalize_type(document_type)
        year = year or datetime.now(timezone.utc).year

        result = await self.db.execute(
            select(DocumentSequence).where(
                DocumentSequence.document_type == doc_type.value,
                DocumentSequence.year == year,
            )
        )
        sequence = result.scalar_one_or_none()
        if sequence:
            return sequence.preview_next_number()

        padding = DOCUMENT_METADATA[doc_type]["padding"]
        return f"{doc_type.value}-{year}-{'1'.zfill(padding)}"

    @staticmethod
    def _normalize_type(document_type: Union[DocumentType, str]) -> DocumentType:
        try:
            return DocumentType(document_type.upper() if isinstance(document_type, str) else document_type)
        except ValueError:
            valid_types = ", ".join(t.value for t in DocumentType)
            raise ValueError(f"Invalid document type '{document_type}'. Valid types: {valid_types}")

    async def _get_or_create_sequence(self, doc_type: DocumentType, year: int) -> DocumentSequence:
        """
        Get existing sequence with row lock, or create new one.

        Two first-of-year requests racing on the insert both end up locking
        the same row; the second waits for the first to commit.
        """
        sequence = await self._lock_sequence(doc_type, year)
        if sequence:
            return sequence

        await insert_if_missing(
            self.db,
            DocumentSequence,
            ("document_type", "year"),
            document_type=doc_type.value,
            year=year,
            current_number=0,
            padding_length=DOCUMENT_METADATA[doc_type]["padding"],
        )
        logger.info("Started document sequence %s/%s", doc_type.value, year)

        sequence = await self._lock_sequence(doc_type, year)
        if sequence is None:
            raise RuntimeError(f"Document sequence {doc_type.value}/{year} could not be created")
        return sequence

    async def _lock_sequence(self, doc_type: DocumentType, year: int) -> Optional[DocumentSequence]:
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.document_type == doc_type.value,
                DocumentSequence.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
