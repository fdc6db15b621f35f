"""
MJML Email Templates
Invoice email templates using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .config import COMPANY_EMAIL, COMPANY_NAME, FRONTEND_URL

# App theme colors - Blue/Slate color scheme
THEME = {
    "primary": "#2563eb",
    "primary_dark": "#1d4ed8",
    "primary_light": "#dbeafe",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <!-- Header -->
        <mj-section background-color="#ffffff" padding="32px 20px 16px 20px">
          <mj-column>
            <mj-text font-size="22px" font-weight="700" color="{THEME['primary']}" padding="0">
              {COMPANY_NAME}
            </mj-text>
          </mj-column>
        </mj-section>

        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 32px 0" />
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              ¿Dudas sobre tu factura? Escríbenos a
              <a href="mailto:{COMPANY_EMAIL}" style="color: #64748b;">{COMPANY_EMAIL}</a>
            </mj-text>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="12px 0 0 0">
              © {COMPANY_NAME}. Todos los derechos reservados.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def invoice_email_template(
    customer_name: str,
    invoice_number: str,
    total: str,
    due_date: str = "",
) -> str:
    """Invoice issued notification with the PDF attached"""
    due_date_section = ""
    if due_date:
        due_date_section = f"<br/>Fecha de vencimiento: {due_date}"

    content = f"""
    <mj-text>
      Hola {customer_name},
    </mj-text>

    <mj-text>
      Adjuntamos tu factura de <strong>{COMPANY_NAME}</strong> en formato PDF.
    </mj-text>

    <mj-text align="center" font-size="32px" font-weight="700" color="{THEME['text_primary']}" padding="20px 0">
      {total}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}">
      Factura: {invoice_number}{due_date_section}
    </mj-text>
    """

    return get_base_template(
        title="Tu factura está lista",
        preview_text=f"Factura {invoice_number} - {total}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/billing" if FRONTEND_URL else None,
        cta_label="Ver mis facturas",
    )
