"""
Append-only invoice ledger on Google Sheets.

Column order: entity, supplier, invoice number, date (DD-MMM-YYYY),
description (5 words), excl. VAT, VAT, incl. VAT, archive link, notes,
and optionally the sender address.
"""

from datetime import date

from loguru import logger

from ..models.invoice import AppendResult, ExtractedInvoice, truncate_words

_MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]


def format_ledger_date(value: date | None) -> str:
    """10-JAN-2025. Month abbreviations are fixed, not locale dependent."""
    if value is None:
        return ""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def normalize_invoice_number(value) -> str:
    return str(value or "").strip().casefold()


def build_row(invoice: ExtractedInvoice, archive_link: str, sender: str | None = None,
              include_sender: bool = False) -> list:
    row = [
        invoice.routing.entity_folder_name,
        invoice.supplier_name or "",
        invoice.invoice_number or "",
        format_ledger_date(invoice.issue_date),
        truncate_words(invoice.description),
        invoice.amount_excl_vat if invoice.amount_excl_vat is not None else 0,
        invoice.vat_amount if invoice.vat_amount is not None else 0,
        invoice.total_amount if invoice.total_amount is not None else 0,
        archive_link or "",
        invoice.notes or "",
    ]
    if include_sender:
        row.append(sender or "")
    return row


class LedgerWriter:
    def __init__(self, sheets, sheet_id: str, range_: str = "Sheet1!A:K",
                 invoice_number_range: str = "Sheet1!C:C", include_sender: bool = False):
        self.sheets = sheets
        self.sheet_id = sheet_id
        self.range = range_
        self.invoice_number_range = invoice_number_range
        self.include_sender = include_sender

    async def append(self, invoice: ExtractedInvoice, archive_link: str,
                     sender: str | None = None) -> AppendResult:
        """
        Append one row. Failures come back as AppendResult.error instead of
        raising, so one bad write never stops the scan.
        """
        row = build_row(invoice, archive_link, sender, self.include_sender)
        try:
            result = await self.sheets.append_row(self.sheet_id, self.range, row)
        except Exception as e:
            logger.error("Ledger append failed", invoice_number=invoice.invoice_number, error=str(e))
            return AppendResult(error=str(e) or type(e).__name__)

        logger.info(
            "Ledger row appended",
            invoice_number=invoice.invoice_number,
            updated_range=result.get("updatedRange"),
        )
        return AppendResult(
            updated_range=result.get("updatedRange"),
            updated_rows=result.get("updatedRows") or 0,
        )

    async def exists(self, invoice_number: str | None) -> bool:
        """
        Exact match on the invoice-number column, ignoring case and
        surrounding whitespace. Fails open: any read error means "not found".
        """
        target = normalize_invoice_number(invoice_number)
        if not target:
            return False
        try:
            rows = await self.sheets.read_column(self.sheet_id, self.invoice_number_range)
        except Exception as e:
            logger.warning("Duplicate check failed, treating as new invoice", invoice_number=invoice_number, error=str(e))
            return False
        return any(row and normalize_invoice_number(row[0]) == target for row in rows)
