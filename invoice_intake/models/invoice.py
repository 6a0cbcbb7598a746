from datetime import date, datetime
from enum import Enum
from typing import Literal
import re

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

DESCRIPTION_MAX_WORDS = 5

_DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%Y", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")


def parse_date(value) -> date | None:
    """Parse the date shapes document models actually return; None if unparseable."""
    if value is None or isinstance(value, date):
        return value.date() if isinstance(value, datetime) else value
    text = str(value).strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(value) -> float | None:
    """
    Parse a money amount.

    Handles currency symbols and codes and both decimal separators:
    "452.20", "EUR 1.234,56", "1,234.56", "€ 99".
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[^\d,.\-]", "", str(value))
    if not text:
        return None
    if "," in text and "." in text:
        # Whichever separator comes last is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return None


def truncate_words(text: str | None, max_words: int = DESCRIPTION_MAX_WORDS) -> str:
    if not text:
        return ""
    return " ".join(text.split()[:max_words])


class Category(str, Enum):
    SPVS_AGRIOPS = "SPVs_AgriOps"
    HOLDING = "Holding"
    UNSORTED = "Unsorted"


class RoutingResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: Category
    entity_folder_name: str


class ExtractionFields(BaseModel):
    """Typed view of one document-model response. Unknown keys are ignored."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    is_invoice_document: bool
    reason: str | None = None
    document_type: Literal["invoice", "credit_note", "tax_payment", "other"] | None = None
    invoice_number: str | None = None
    issue_date: date | None = None
    supplier_name: str | None = None
    supplier_tax_id: str | None = None
    customer_name: str | None = None
    total_amount: float | None = None
    amount_excl_vat: float | None = None
    vat_amount: float | None = None
    currency: str | None = None
    line_items_present: bool = False
    description: str | None = None
    notes: str | None = None

    @field_validator("issue_date", mode="before")
    @classmethod
    def _parse_issue_date(cls, value):
        return parse_date(value)

    @field_validator("total_amount", "amount_excl_vat", "vat_amount", mode="before")
    @classmethod
    def _parse_amounts(cls, value):
        return parse_amount(value)

    @field_validator("invoice_number", "supplier_name", "customer_name", "description", "notes", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("line_items_present", mode="before")
    @classmethod
    def _null_is_false(cls, value):
        return False if value is None else value


class ExtractedInvoice(BaseModel):
    """An accepted document: extraction fields plus derived confidence and routing"""
    model_config = ConfigDict(frozen=True)

    is_invoice: bool
    invoice_number: str | None = None
    issue_date: date | None = None
    total_amount: float | None = None
    amount_excl_vat: float | None = None
    vat_amount: float | None = None
    currency: str = "EUR"
    supplier_name: str | None = None
    customer_name: str | None = None
    line_items_present: bool = False
    description: str = ""
    notes: str = ""
    document_type: str | None = None
    confidence: int = Field(ge=0, le=100)
    routing: RoutingResult

    @field_validator("description", mode="before")
    @classmethod
    def _five_words(cls, value):
        return truncate_words(value)


class ArchivalLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_id: str
    web_view_link: str
    folder_path: str
    terminal_folder_id: str


class ArchiveFolder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class AppendResult(BaseModel):
    """Outcome of a ledger append. `error` is set instead of raising."""
    updated_range: str | None = None
    updated_rows: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: date | None = Field(default=None, alias="dateFrom")


class _ResultItem(BaseModel):
    # The dashboard reads camelCase keys (messageId, fileLink)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessedItem(_ResultItem):
    status: Literal["success"] = "success"
    message_id: str
    filename: str
    id: str | None = None  # invoice number
    supplier: str | None = None
    date: str | None = None
    amount: float | None = None
    entity: str
    category: Category
    confidence: int
    file_link: str
    folder_path: str
    ledger_error: str | None = None  # archive succeeded but the ledger append degraded


class SkippedItem(_ResultItem):
    status: Literal["skipped"] = "skipped"
    message_id: str
    filename: str | None = None
    reason: str


class ErrorItem(_ResultItem):
    status: Literal["error"] = "error"
    message_id: str
    filename: str | None = None
    error: str


PipelineResult = ProcessedItem | SkippedItem | ErrorItem


class ProcessingSummary(BaseModel):
    processed: list[ProcessedItem] = []
    skipped: list[SkippedItem] = []
    errors: list[ErrorItem] = []

    @computed_field
    @property
    def success(self) -> bool:
        """False when any message ended as an error"""
        return not self.errors

    def add(self, result: PipelineResult) -> None:
        if isinstance(result, ProcessedItem):
            self.processed.append(result)
        elif isinstance(result, SkippedItem):
            self.skipped.append(result)
        else:
            self.errors.append(result)

    @classmethod
    def from_results(cls, results: list[PipelineResult]) -> "ProcessingSummary":
        summary = cls()
        for result in results:
            summary.add(result)
        return summary
