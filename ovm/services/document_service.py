"""
Document generation: proof of collection (POC), proof of delivery (POD) and invoice PDFs.

Document data is assembled from the database in the caller's request, then
rendering, storing and emailing run as a supervised background task. The
worker never touches the database.
"""

import io
import logging
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from flask import current_app
from flask_mail import Message
from PIL import Image as PILImage
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ovm.extensions import document_tasks, mail
from ovm.services.errors import ImageProcessingError, ServiceError
from ovm.services.expense_service import ExpenseService, decode_receipt
from ovm.services.media_store import MediaStore
from ovm.utils.timezone_utils import format_datetime_for_display, utc_now

logger = logging.getLogger(__name__)

DOCUMENT_FOR_STAGE = {'collection': 'POC', 'delivery': 'POD'}
DOCUMENT_TITLES = {
    'POC': 'Proof of Collection',
    'POD': 'Proof of Delivery',
    'Invoice': 'Invoice',
}
MAX_EMBEDDED_PHOTOS = 24
PHOTO_WIDTH = 3.0 * inch


def _address_lines(address) -> str:
    if not address:
        return ""
    if isinstance(address, dict):
        parts = [address.get(key) for key in ('line1', 'line2', 'city', 'county', 'postcode')]
        return ", ".join(str(p) for p in parts if p)
    return str(address)


def _contact_line(contact) -> str:
    if not contact:
        return ""
    if isinstance(contact, dict):
        return " / ".join(str(contact[k]) for k in ('name', 'phone', 'email') if contact.get(k))
    return str(contact)


def resolve_recipients(job, document_type) -> List[str]:
    """Job override list, else the customer's default list for the document, else the customer email."""
    override = job.override_emails_for(document_type)
    if override:
        return list(override)
    customer = job.customer
    if customer is None:
        return []
    defaults = customer.default_emails_for(document_type)
    if defaults:
        return list(defaults)
    return [customer.email] if customer.email else []


class DocumentService:

    @staticmethod
    def build_data(job, document_type, store: MediaStore, inspection=None) -> Dict[str, Any]:
        """Collect everything a document needs into plain data."""
        if document_type not in DOCUMENT_TITLES:
            raise ServiceError(f"Unknown document type '{document_type}'")

        vehicle = job.vehicle
        data = {
            'document_type': document_type,
            'title': DOCUMENT_TITLES[document_type],
            'job_id': job.id,
            'job_number': job.job_number,
            'status': job.status,
            'customer': {
                'name': job.customer.name if job.customer else None,
                'company_name': job.customer.company_name if job.customer else None,
                'email': job.customer.email if job.customer else None,
                'address': job.customer.address if job.customer else None,
            },
            'driver_name': job.driver.name if job.driver else None,
            'vehicle': {
                'registration': vehicle.registration if vehicle else None,
                'make': vehicle.make if vehicle else None,
                'model': vehicle.model if vehicle else None,
                'colour': vehicle.colour if vehicle else None,
                'fuel_type': vehicle.fuel_type if vehicle else None,
            },
            'collection_address': _address_lines(job.collection_address),
            'delivery_address': _address_lines(job.delivery_address),
            'collection_contact': _contact_line(job.collection_contact),
            'delivery_contact': _contact_line(job.delivery_contact),
            'calculated_mileage': job.calculated_mileage,
            'recipients': resolve_recipients(job, document_type),
            'generated_at': format_datetime_for_display(utc_now()),
        }

        if document_type == 'Invoice':
            lines = [{'description': 'Vehicle movement', 'amount': float(job.total_movement_fee or 0)}]
            for expense in ExpenseService.chargeable_for_job(job.id):
                label = expense.type.capitalize()
                if expense.description:
                    label = f"{label}: {expense.description}"
                lines.append({'description': f"Expense - {label}", 'amount': float(expense.amount)})
            data['invoice_lines'] = lines
            data['invoice_total'] = round(sum(line['amount'] for line in lines), 2)
            return data

        stage = 'collection' if document_type == 'POC' else 'delivery'
        record_data = dict(inspection.data or {}) if inspection is not None else {}
        photo_refs = record_data.get('photos')
        data.update({
            'stage': stage,
            'customer_name': record_data.get('customer_name'),
            'signature': record_data.get('signature'),
            'completed_at': record_data.get('completed_at'),
            'notes': record_data.get('notes'),
            'damage_markers': record_data.get('damage_markers') or [],
            'photos_by_category': photo_refs if isinstance(photo_refs, dict) else {},
            'photo_paths': store.list_photos(job.job_number, stage),
            'expenses': [
                {'type': e.type, 'amount': float(e.amount), 'receipt_path': e.receipt_path}
                for e in job.expenses if e.stage == stage
            ],
        })
        return data

    @staticmethod
    def schedule(job, document_type, inspection=None, store: Optional[MediaStore] = None):
        """Build the document data now and hand rendering to the background workers."""
        store = store or MediaStore.from_config()
        data = DocumentService.build_data(job, document_type, store, inspection=inspection)
        return document_tasks.submit(
            f"generate_{document_type.lower()}",
            DocumentService.generate,
            data,
            context={'job_number': job.job_number, 'document_type': document_type},
        )

    @staticmethod
    def schedule_for_stage(job, stage, inspection):
        return DocumentService.schedule(job, DOCUMENT_FOR_STAGE[stage], inspection=inspection)

    @staticmethod
    def generate(data: Dict[str, Any]) -> str:
        """Render, store and email one document. Runs inside the app context on a worker."""
        store = MediaStore.from_config()
        pdf = DocumentService.render(data, store)
        path = store.save_document(data['job_number'], data['document_type'], pdf)
        DocumentService.send(data, pdf)
        return path

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------
    @staticmethod
    def _pdf_image(image_bytes: bytes, width: float = PHOTO_WIDTH) -> Image:
        with PILImage.open(io.BytesIO(image_bytes)) as img:
            px_width, px_height = img.size
        height = width * px_height / px_width
        return Image(io.BytesIO(image_bytes), width=width, height=height)

    @staticmethod
    def _photo_flowables(paths: List[str], store: MediaStore) -> List[Image]:
        images = []
        for path in paths[:MAX_EMBEDDED_PHOTOS]:
            try:
                with open(path, 'rb') as fh:
                    result = store.compression.compress(fh.read(), 'pdf', generate_thumbnail=False)
                images.append(DocumentService._pdf_image(result.compressed))
            except (OSError, ImageProcessingError) as e:
                logger.warning(f"Skipping photo {path} in document: {e}")
        return images

    @staticmethod
    def render(data: Dict[str, Any], store: MediaStore) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=54, bottomMargin=54,
                                title=f"{data['title']} {data['job_number']}")
        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            'DocTitle',
            parent=styles['Heading1'],
            fontSize=16,
            spaceAfter=12,
            alignment=1,
            fontName='Helvetica-Bold'
        )
        heading_style = ParagraphStyle(
            'DocHeading',
            parent=styles['Heading2'],
            fontSize=12,
            spaceBefore=12,
            spaceAfter=6,
            fontName='Helvetica-Bold'
        )
        normal_style = ParagraphStyle(
            'DocNormal',
            parent=styles['Normal'],
            fontSize=10,
            fontName='Helvetica'
        )

        def p(text):
            return Paragraph(escape(str(text)) if text is not None else "", normal_style)

        story = [Paragraph(f"{data['title']} - {escape(data['job_number'])}", title_style)]

        vehicle = data['vehicle']
        details = [
            [p("Job number"), p(data['job_number'])],
            [p("Customer"), p(data['customer'].get('company_name') or data['customer'].get('name'))],
            [p("Vehicle"), p(" ".join(v for v in (vehicle.get('registration'), vehicle.get('make'),
                                                   vehicle.get('model'), vehicle.get('colour')) if v))],
            [p("Driver"), p(data.get('driver_name') or "")],
            [p("Collection"), p(data['collection_address'])],
            [p("Delivery"), p(data['delivery_address'])],
            [p("Generated"), p(data['generated_at'])],
        ]
        if data.get('calculated_mileage') is not None:
            details.append([p("Mileage"), p(f"{data['calculated_mileage']:.1f} miles")])
        details_table = Table(details, colWidths=[1.5 * inch, 5.0 * inch])
        details_table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('BACKGROUND', (0, 0), (0, -1), colors.HexColor("#f2f2f2")),
        ]))
        story.append(details_table)

        if data['document_type'] == 'Invoice':
            story.append(Paragraph("Charges", heading_style))
            rows = [[p("Description"), p("Amount (GBP)")]]
            rows += [[p(line['description']), p(f"{line['amount']:.2f}")] for line in data['invoice_lines']]
            rows.append([Paragraph("<b>Total</b>", normal_style), Paragraph(f"<b>{data['invoice_total']:.2f}</b>", normal_style)])
            table = Table(rows, colWidths=[5.0 * inch, 1.5 * inch])
            table.setStyle(TableStyle([
                ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor("#0056b3")),
                ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
                ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
                ('ROWBACKGROUNDS', (0, 1), (-1, -2), [colors.white, colors.HexColor("#f2f2f2")]),
            ]))
            story.append(table)
        else:
            markers = data.get('damage_markers') or []
            story.append(Paragraph(f"Damage ({len(markers)})", heading_style))
            if markers:
                rows = [[p("Position"), p("Type"), p("Severity"), p("Notes")]]
                for marker in markers:
                    position = marker.get('position') or {}
                    if isinstance(position, dict):
                        position = f"{position.get('view', '')} ({position.get('x', '')}, {position.get('y', '')})"
                    rows.append([p(position), p(marker.get('type')), p(marker.get('severity')), p(marker.get('notes') or "")])
                table = Table(rows, colWidths=[2.0 * inch, 1.3 * inch, 1.0 * inch, 2.2 * inch])
                table.setStyle(TableStyle([
                    ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
                    ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor("#f2f2f2")),
                ]))
                story.append(table)
            else:
                story.append(p("No damage recorded."))

            if data.get('notes'):
                story.append(Paragraph("Notes", heading_style))
                story.append(p(data['notes']))

            photos = DocumentService._photo_flowables(data.get('photo_paths') or [], store)
            if photos:
                story.append(Paragraph(f"Photos ({len(photos)})", heading_style))
                rows = [photos[i:i + 2] for i in range(0, len(photos), 2)]
                if len(rows[-1]) == 1:
                    rows[-1].append("")
                story.append(Table(rows, colWidths=[3.25 * inch, 3.25 * inch]))

            story.append(Paragraph("Handover", heading_style))
            story.append(p(f"Received by: {data.get('customer_name') or ''}"))
            story.append(p(f"Completed at: {data.get('completed_at') or ''}"))
            signature = data.get('signature')
            if signature:
                try:
                    signature_bytes = decode_receipt(signature)
                    if signature_bytes:
                        story.append(Spacer(1, 6))
                        story.append(DocumentService._pdf_image(signature_bytes, width=2.0 * inch))
                except (ServiceError, OSError, ValueError) as e:
                    logger.warning(f"Signature for job {data['job_number']} could not be embedded: {e}")

        doc.build(story)
        pdf = buffer.getvalue()
        logger.info(f"{data['document_type']} rendered for job {data['job_number']} ({len(pdf) // 1024}KB)")
        return pdf

    # ------------------------------------------------------------------
    # email
    # ------------------------------------------------------------------
    @staticmethod
    def send(data: Dict[str, Any], pdf: bytes) -> bool:
        """Email the document. Failures are logged, never raised."""
        recipients = data.get('recipients') or []
        if not current_app.config.get('DOCUMENT_EMAIL_ENABLED', True):
            return False
        if not recipients:
            logger.warning(f"No recipients for {data['document_type']} of job {data['job_number']}; email skipped")
            return False
        try:
            msg = Message(
                subject=f"{data['title']} - Job {data['job_number']}",
                recipients=recipients,
                body=(
                    f"Please find attached the {data['title'].lower()} for job {data['job_number']}"
                    f" ({data['vehicle'].get('registration') or 'vehicle'})."
                ),
            )
            msg.attach(f"{data['document_type']}_{data['job_number']}.pdf", 'application/pdf', pdf)
            mail.send(msg)
            logger.info(f"{data['document_type']} for job {data['job_number']} emailed to {', '.join(recipients)}")
            return True
        except Exception as e:
            logger.error(f"Failed to email {data['document_type']} for job {data['job_number']}: {e}", exc_info=True)
            return False
