"""
Document understanding for incoming PDFs.

A DocumentModel turns raw bytes into a JSON payload in the fixed output
schema below. DocumentAnalyzer validates that payload at the boundary,
applies the 3-of-5 acceptance gate, derives confidence, and routes the
invoice to an entity folder.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass

from loguru import logger
from pydantic import ValidationError

from ..core.errors import AnalysisRejection, ConfigurationError
from ..models.invoice import ExtractedInvoice, ExtractionFields, parse_amount
from .entity_router import EntityRouter

SIGNAL_COUNT = 5
MIN_SIGNALS = 3
FAILED_VALIDATION = "failed validation"

INSTRUCTION_PROMPT = """You are an invoice detection and data extraction system specialized in Portuguese invoices (faturas).
Portuguese invoices have mandatory elements: a QR code (required by the tax authority since 2022), the NIF (tax identification number),
an invoice number (e.g. FT 2025/001) and a VAT (IVA) breakdown.

Decide whether the document is an invoice, a credit note, a tax payment document or something else, then extract its fields.

SPECIAL HANDLING RULES:
1. Credit notes: all amounts must be NEGATIVE and notes must contain "CREDIT NOTE".
2. Retenção na fonte (tax withholding): amount_excl_vat is the gross amount before withholding,
   total_amount is the net amount after withholding; add "Retenção na fonte: X%" to notes.
3. Tax payment documents (Segurança Social, IRS, IMI): supplier_name is the tax authority,
   invoice_number is the document reference, vat_amount is 0.00, add "Tax payment" to notes.
4. Payment discounts: put the discount terms in notes (e.g. "2% if paid within 15 days").

customer_name is the entity the document is addressed to; supplier_name is the vendor.
issue_date must be ISO format (YYYY-MM-DD). description is at most 5 words summarising the content.
When the document is not an invoice, set is_invoice_document to false and explain why in reason.
Use null for any field that is not present on the document."""


def _nullable(kind: str) -> dict:
    return {"type": [kind, "null"]}


OUTPUT_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "is_invoice_document": {"type": "boolean"},
        "reason": _nullable("string"),
        "document_type": {"type": ["string", "null"], "enum": ["invoice", "credit_note", "tax_payment", "other", None]},
        "invoice_number": _nullable("string"),
        "issue_date": _nullable("string"),
        "supplier_name": _nullable("string"),
        "supplier_tax_id": _nullable("string"),
        "customer_name": _nullable("string"),
        "total_amount": _nullable("number"),
        "amount_excl_vat": _nullable("number"),
        "vat_amount": _nullable("number"),
        "currency": _nullable("string"),
        "line_items_present": {"type": "boolean"},
        "description": _nullable("string"),
        "notes": _nullable("string"),
    },
}
OUTPUT_SCHEMA["required"] = list(OUTPUT_SCHEMA["properties"])


# ---------------------------------------------------------------------------
# Validation gate
# ---------------------------------------------------------------------------

def validation_signals(fields: ExtractionFields) -> dict[str, bool]:
    """The five extraction signals that make a document look like an invoice"""
    return {
        "invoice_number": bool(fields.invoice_number and fields.invoice_number.strip()),
        "issue_date": fields.issue_date is not None,
        "supplier_name": bool(fields.supplier_name and fields.supplier_name.strip()),
        "total_amount": bool(fields.total_amount),
        "line_items_present": fields.line_items_present is True,
    }


def passes_validation(fields: ExtractionFields) -> bool:
    """
    Inclusive-OR gate: accept when the model says it is an invoice OR at
    least 3 of the 5 signals hold. Borderline documents are kept rather
    than dropped.
    """
    matched = sum(validation_signals(fields).values())
    return fields.is_invoice_document or matched >= MIN_SIGNALS


def confidence_score(fields: ExtractionFields) -> int:
    """Derived, not model-reported: signals present / 5 * 100"""
    return round(sum(validation_signals(fields).values()) / SIGNAL_COUNT * 100)


# ---------------------------------------------------------------------------
# Model backends
# ---------------------------------------------------------------------------

class DocumentModel(ABC):
    """A document-understanding service returning the OUTPUT_SCHEMA shape"""

    name: str = "model"

    @abstractmethod
    async def infer(self, data: bytes, filename: str) -> dict:
        """One request per document. Raises on transport or API failure."""

    async def aclose(self) -> None:
        """Release network resources held by the backend"""


class OpenAIDocumentModel(DocumentModel):
    """
    OpenAI chat completions with a strict JSON schema.

    The PDF is uploaded as a temporary file and referenced by id; the upload
    is deleted afterwards on both the success and the failure path.
    """

    name = "openai"

    def __init__(self, client, model: str = "gpt-4o", timeout: float = 60.0):
        self.client = client
        self.model = model
        self.timeout = timeout

    async def aclose(self) -> None:
        await self.client.close()

    @asynccontextmanager
    async def _uploaded(self, data: bytes, filename: str):
        uploaded = await self.client.files.create(
            file=(filename, data, "application/pdf"),
            purpose="user_data",
            timeout=self.timeout,
        )
        try:
            yield uploaded.id
        finally:
            try:
                await self.client.files.delete(uploaded.id, timeout=self.timeout)
            except Exception as e:
                # Never let cleanup mask the analysis result
                logger.warning("Failed to delete temporary model upload", file_id=uploaded.id, error=str(e))

    async def infer(self, data: bytes, filename: str) -> dict:
        async with self._uploaded(data, filename) as file_id:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": INSTRUCTION_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": f"Analyze this PDF document (filename: {filename})."},
                            {"type": "file", "file": {"file_id": file_id}},
                        ],
                    },
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "invoice_extraction", "strict": True, "schema": OUTPUT_SCHEMA},
                },
                timeout=self.timeout,
            )
        content = response.choices[0].message.content
        try:
            return json.loads(content or "")
        except json.JSONDecodeError as e:
            raise AnalysisRejection(f"malformed model output: {e}")


class AzureDocumentModel(DocumentModel):
    """Azure Document Intelligence prebuilt-invoice model mapped onto OUTPUT_SCHEMA"""

    name = "azure"

    def __init__(self, client, timeout: float = 60.0):
        self.client = client
        self.timeout = timeout

    async def aclose(self) -> None:
        await self.client.close()

    async def infer(self, data: bytes, filename: str) -> dict:
        logger.info("Analyzing document with Azure DI", filename=filename, size_bytes=len(data))

        async def analyze():
            poller = await self.client.begin_analyze_document(
                "prebuilt-invoice",
                body=data,
                content_type="application/octet-stream",
            )
            return await poller.result()

        result = await asyncio.wait_for(analyze(), timeout=self.timeout)

        if not result.documents:
            return {
                "is_invoice_document": False,
                "reason": "no invoice structure found",
                "line_items_present": False,
            }

        doc = result.documents[0]
        fields = doc.fields or {}

        def get_field_content(field_name):
            if field_name not in fields:
                return None
            field = fields[field_name]
            if getattr(field, "content", None):
                return field.content
            if getattr(field, "value_string", None):
                return field.value_string
            return None

        def get_amount(field_name):
            field = fields.get(field_name)
            if field is None:
                return None
            currency = getattr(field, "value_currency", None)
            if currency is not None and currency.amount is not None:
                return currency.amount
            return parse_amount(get_field_content(field_name))

        currency_code = get_field_content("CurrencyCode")
        total_field = fields.get("InvoiceTotal")
        if not currency_code and total_field is not None and getattr(total_field, "value_currency", None):
            currency_code = total_field.value_currency.currency_code

        invoice_date = fields.get("InvoiceDate")
        issue_date = getattr(invoice_date, "value_date", None) if invoice_date else None

        items = fields.get("Items")
        line_items = bool(items and getattr(items, "value_array", None))

        return {
            "is_invoice_document": True,
            "reason": None,
            "document_type": "invoice",
            "invoice_number": get_field_content("InvoiceId"),
            "issue_date": issue_date.isoformat() if issue_date else get_field_content("InvoiceDate"),
            "supplier_name": get_field_content("VendorName"),
            "supplier_tax_id": get_field_content("VendorTaxId"),
            "customer_name": get_field_content("CustomerName") or get_field_content("BillingAddressRecipient"),
            "total_amount": get_amount("InvoiceTotal"),
            "amount_excl_vat": get_amount("SubTotal"),
            "vat_amount": get_amount("TotalTax"),
            "currency": currency_code,
            "line_items_present": line_items,
            "description": None,
            "notes": None,
        }


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Accepted:
    invoice: ExtractedInvoice
    accepted: bool = True


@dataclass(frozen=True)
class Rejected:
    """
    `failed` distinguishes a broken call (network, timeout, API error) from
    a document that simply is not an invoice.
    """
    reason: str
    failed: bool = False
    accepted: bool = False


Analysis = Accepted | Rejected


class DocumentAnalyzer:
    def __init__(self, model: DocumentModel, router: EntityRouter):
        self.model = model
        self.router = router

    async def analyze(self, data: bytes, filename: str) -> Analysis:
        """Never raises for a single bad document; the outcome says what happened"""
        try:
            payload = await self.model.infer(data, filename)
        except AnalysisRejection as e:
            return Rejected(reason=e.reason)
        except asyncio.TimeoutError:
            logger.error("Document model timed out", model=self.model.name, filename=filename)
            return Rejected(reason=f"{self.model.name} model call timed out", failed=True)
        except Exception as e:
            logger.error("Document model call failed", model=self.model.name, filename=filename, error=str(e))
            return Rejected(reason=str(e) or type(e).__name__, failed=True)

        try:
            fields = self.parse(payload)
        except AnalysisRejection as e:
            logger.warning("Rejected malformed model output", filename=filename, reason=e.reason)
            return Rejected(reason=e.reason)

        if not passes_validation(fields):
            reason = fields.reason or FAILED_VALIDATION
            logger.info(
                "Document rejected",
                filename=filename,
                reason=reason,
                signals=validation_signals(fields),
            )
            return Rejected(reason=reason)

        invoice = self.build_invoice(fields)
        logger.info(
            "Document accepted",
            filename=filename,
            invoice_number=invoice.invoice_number,
            confidence=invoice.confidence,
            entity=invoice.routing.entity_folder_name,
        )
        return Accepted(invoice=invoice)

    @staticmethod
    def parse(payload) -> ExtractionFields:
        if not isinstance(payload, dict):
            raise AnalysisRejection("malformed model output: expected a JSON object")
        try:
            return ExtractionFields.model_validate(payload)
        except ValidationError as e:
            raise AnalysisRejection(f"malformed model output: {e.error_count()} invalid field(s)")

    def build_invoice(self, fields: ExtractionFields) -> ExtractedInvoice:
        notes = fields.notes or ""
        if fields.document_type == "credit_note" and "CREDIT NOTE" not in notes.upper():
            notes = f"CREDIT NOTE. {notes}".strip()

        return ExtractedInvoice(
            is_invoice=True,
            invoice_number=fields.invoice_number,
            issue_date=fields.issue_date,
            total_amount=fields.total_amount,
            amount_excl_vat=fields.amount_excl_vat,
            vat_amount=fields.vat_amount,
            currency=fields.currency or "EUR",
            supplier_name=fields.supplier_name,
            customer_name=fields.customer_name,
            line_items_present=fields.line_items_present,
            description=fields.description or "",
            notes=notes,
            document_type=fields.document_type,
            confidence=confidence_score(fields),
            routing=self.router.route(fields.customer_name, fields.supplier_name),
        )


def create_document_model(settings=None) -> DocumentModel:
    """Build the configured backend. Missing credentials are a configuration error."""
    if settings is None:
        from ..core.config import settings

    backend = settings.document_model.lower()
    if backend == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.remote_timeout_seconds)
        return OpenAIDocumentModel(client, model=settings.openai_model, timeout=settings.remote_timeout_seconds)

    if backend == "azure":
        if not (settings.az_di_endpoint and settings.az_di_api_key):
            raise ConfigurationError("AZ_DI_ENDPOINT and AZ_DI_API_KEY must be set for the azure document model")
        from azure.ai.documentintelligence.aio import DocumentIntelligenceClient
        from azure.core.credentials import AzureKeyCredential

        client = DocumentIntelligenceClient(
            endpoint=settings.az_di_endpoint,
            credential=AzureKeyCredential(settings.az_di_api_key),
        )
        return AzureDocumentModel(client, timeout=settings.remote_timeout_seconds)

    raise ConfigurationError(f"Unknown DOCUMENT_MODEL '{settings.document_model}' (expected openai or azure)")
