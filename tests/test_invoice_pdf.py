import re
from datetime import datetime

from app.services.invoice_pdf_generator import (
    InvoicePDFGenerator,
    _format_date,
    default_company_info,
)


def invoice_data(**overrides) -> dict:
    data = {
        "invoice_number": "INV-20260105-042",
        "status": "sent",
        "currency": "MXN",
        "subtotal": 2000,
        "tax_amount": 320,
        "total_amount": 2320,
        "created_at": datetime(2026, 1, 5, 9, 30),
        "due_date": datetime(2026, 2, 4),
        "notes": "Pago con tarjeta <Visa> & referencia",
        "customer_info": {"name": "Ana García", "email": "ana@example.com", "phone": None},
        "company_info": default_company_info(),
        "items": [
            {"description": "Consulta general", "quantity": 2, "unit_price": 500, "amount": 1000},
            {"description": "Receta digital", "quantity": 1, "unit_price": 1000, "amount": 1000},
        ],
    }
    data.update(overrides)
    return data


def test_generates_a_pdf_document():
    pdf = InvoicePDFGenerator(invoice_data()).generate()

    assert pdf.startswith(b"%PDF")
    assert pdf.rstrip().endswith(b"%%EOF")


def test_output_is_identical_for_identical_input():
    first = InvoicePDFGenerator(invoice_data()).generate()
    second = InvoicePDFGenerator(invoice_data()).generate()

    assert first == second


def page_count(pdf: bytes) -> int:
    return max(int(n) for n in re.findall(rb"/Count (\d+)", pdf))


def test_long_invoices_span_multiple_pages():
    items = [
        {"description": f"Sesión de seguimiento {n}", "quantity": 1, "unit_price": 100, "amount": 100}
        for n in range(120)
    ]

    assert page_count(InvoicePDFGenerator(invoice_data()).generate()) == 1
    assert page_count(InvoicePDFGenerator(invoice_data(items=items)).generate()) > 1


def test_missing_optional_fields_still_render():
    pdf = InvoicePDFGenerator(
        invoice_data(due_date=None, notes=None, customer_info={}, company_info=None, currency=None)
    ).generate()

    assert pdf.startswith(b"%PDF")


def test_format_date():
    assert _format_date(datetime(2026, 3, 9, 15, 0)) == "09/03/2026"
    assert _format_date("2026-03-09T15:00:00") == "09/03/2026"
    assert _format_date(None) == "N/A"
