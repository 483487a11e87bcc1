"""
Export PDF d'un contrat signé (reportlab).
Rendu pur et sans état à partir de données déjà confirmées: un échec n'affecte jamais le checkout.
"""
import io
import logging
import re
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from wedding_checkout.config import SUPPORT_EMAIL

logger = logging.getLogger(__name__)

MARGIN = 0.75 * inch


def contract_filename(package_name: str) -> str:
    """Ex: "Gold Photo Package" -> "Gold_Photo_Package_Contract.pdf"."""
    base = re.sub(r"\s+", "_", (package_name or "").strip()) or "Service"
    return f"{base}_Contract.pdf"


def _format_signed_at(signed_at: Optional[str]) -> str:
    if not signed_at:
        return datetime.now(timezone.utc).strftime("%B %d, %Y")
    try:
        return datetime.fromisoformat(signed_at.replace("Z", "+00:00")).strftime("%B %d, %Y")
    except ValueError:
        return signed_at


def render_contract_pdf(content: str, signature: str, package_name: str = "",
                        signed_at: Optional[str] = None) -> bytes:
    """Retourne les octets du PDF: en-tête, termes du contrat, bloc de signature."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=MARGIN,
        leftMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=f"{package_name or 'Service'} Contract",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ContractTitle", parent=styles["Heading1"], fontSize=20, alignment=1, spaceAfter=12)
    heading_style = ParagraphStyle("ContractHeading", parent=styles["Heading2"], fontSize=13, spaceBefore=16, spaceAfter=8)
    body_style = ParagraphStyle("ContractBody", parent=styles["Normal"], fontSize=10, leading=14, spaceAfter=6)
    footer_style = ParagraphStyle("ContractFooter", parent=styles["Normal"], fontSize=8,
                                  textColor=colors.grey, alignment=1, spaceBefore=24)

    story = [Paragraph("SERVICE CONTRACT", title_style)]
    if package_name:
        story.append(Paragraph(f"Service: {escape(package_name)}", body_style))
    story.append(Paragraph("CONTRACT TERMS", heading_style))
    for line in (content or "").splitlines():
        if line.strip():
            story.append(Paragraph(escape(line), body_style))
        else:
            story.append(Spacer(1, 6))

    story.append(Paragraph("DIGITAL SIGNATURE", heading_style))
    story.append(Paragraph(f"Signed by: {escape(signature)}", body_style))
    story.append(Paragraph(f"Date: {escape(_format_signed_at(signed_at))}", body_style))
    story.append(Paragraph(f"For questions about this contract, contact {escape(SUPPORT_EMAIL)}", footer_style))

    doc.build(story)
    pdf_bytes = buffer.getvalue()
    buffer.close()
    logger.info("contracts.export generated pdf bytes=%s", len(pdf_bytes))
    return pdf_bytes
