"""
Shared fixtures for the pipeline tests.
"""

from datetime import date

import pytest

from invoice_intake.models.invoice import Category, ExtractedInvoice, RoutingResult


@pytest.fixture
def extraction_payload():
    """A well-formed model response for a supplier invoice to AMANDEL"""
    return {
        "is_invoice_document": True,
        "reason": None,
        "document_type": "invoice",
        "invoice_number": "FT 2025/001",
        "issue_date": "2025-01-10",
        "supplier_name": "EDP Comercial",
        "supplier_tax_id": "503504564",
        "customer_name": "AMANDEL - Sociedade Agrícola, Lda",
        "total_amount": 123.0,
        "amount_excl_vat": 100.0,
        "vat_amount": 23.0,
        "currency": "EUR",
        "line_items_present": True,
        "description": "Electricity supply for January 2025 farm",
        "notes": None,
    }


@pytest.fixture
def invoice():
    return ExtractedInvoice(
        is_invoice=True,
        invoice_number="FT 2025/001",
        issue_date=date(2025, 1, 10),
        total_amount=123.0,
        amount_excl_vat=100.0,
        vat_amount=23.0,
        supplier_name="EDP Comercial",
        customer_name="AMANDEL - Sociedade Agrícola, Lda",
        line_items_present=True,
        description="Electricity supply for January",
        confidence=100,
        routing=RoutingResult(
            category=Category.SPVS_AGRIOPS,
            entity_folder_name="AMANDEL - Sociedade Agrícola, Lda",
        ),
    )
