"""
Payroll Engine - Payslip PDF Service

Renders payslips to PDF with ReportLab, in Indonesian or English.
"""

import io
import logging
from decimal import Decimal
from typing import Dict, List

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from payroll_engine.services.payslip_service import Payslip, PayslipLine

logger = logging.getLogger(__name__)

HEADER_COLOR = colors.HexColor('#1a365d')

TEXT: Dict[str, Dict[str, str]] = {
    "id": {
        "title": "SLIP GAJI",
        "period": "Periode",
        "payment_date": "Tanggal Pembayaran",
        "employee_number": "NIK",
        "name": "Nama",
        "position": "Jabatan",
        "department": "Departemen",
        "attendance": "Kehadiran",
        "working_days": "Hari Kerja",
        "present_days": "Hadir",
        "absent_days": "Tidak Hadir",
        "late_days": "Terlambat",
        "overtime_hours": "Jam Lembur",
        "earnings": "Pendapatan",
        "deductions": "Potongan",
        "total_earnings": "Total Pendapatan",
        "total_deductions": "Total Potongan",
        "net_pay": "Gaji Bersih",
        "employer_costs": "Kontribusi Perusahaan",
        "total_employer_cost": "Total Biaya Perusahaan",
        "footer": "Dokumen ini dibuat secara elektronik dan tidak memerlukan tanda tangan.",
    },
    "en": {
        "title": "PAYSLIP",
        "period": "Period",
        "payment_date": "Payment Date",
        "employee_number": "Employee No.",
        "name": "Name",
        "position": "Position",
        "department": "Department",
        "attendance": "Attendance",
        "working_days": "Working Days",
        "present_days": "Present",
        "absent_days": "Absent",
        "late_days": "Late",
        "overtime_hours": "Overtime Hours",
        "earnings": "Earnings",
        "deductions": "Deductions",
        "total_earnings": "Total Earnings",
        "total_deductions": "Total Deductions",
        "net_pay": "Net Pay",
        "employer_costs": "Employer Contributions",
        "total_employer_cost": "Total Employer Cost",
        "footer": "This document is generated electronically and requires no signature.",
    },
}


def format_rupiah(amount: Decimal) -> str:
    """Rp 1.234.567 (Indonesian thousands separator)."""
    sign = "-" if amount < 0 else ""
    return f"{sign}Rp {abs(int(amount)):,}".replace(",", ".")


class PayslipPDFRenderer:
    """Service for rendering payslips as PDF documents."""

    def render(self, payslip: Payslip) -> bytes:
        """
        Render a payslip.

        Returns:
            PDF bytes
        """
        text = TEXT[payslip.language]
        buffer = io.BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=20*mm,
            leftMargin=20*mm,
            topMargin=20*mm,
            bottomMargin=20*mm,
            title=f"{text['title']} {payslip.employee_number} {payslip.period_name}",
        )

        styles = getSampleStyleSheet()

        title_style = ParagraphStyle(
            'PayslipTitle',
            parent=styles['Heading1'],
            fontSize=18,
            textColor=HEADER_COLOR,
            spaceAfter=6,
        )

        heading_style = ParagraphStyle(
            'PayslipHeading',
            parent=styles['Heading2'],
            fontSize=12,
            textColor=HEADER_COLOR,
            spaceBefore=10,
            spaceAfter=4,
        )

        normal_style = ParagraphStyle(
            'PayslipNormal',
            parent=styles['Normal'],
            fontSize=9,
            spaceAfter=2,
        )

        right_style = ParagraphStyle(
            'PayslipRight',
            parent=styles['Normal'],
            fontSize=9,
            alignment=TA_RIGHT,
        )

        elements = []

        # Company and title
        elements.append(Paragraph(f"<b>{payslip.company_name}</b>", title_style))
        elements.append(Paragraph(payslip.company_address, normal_style))
        elements.append(Spacer(1, 8))
        elements.append(Paragraph(f"{text['title']} - {payslip.period_name}", heading_style))

        elements.append(self._build_employee_section(payslip, text, normal_style))
        elements.append(Spacer(1, 10))

        elements.append(Paragraph(text["attendance"], heading_style))
        elements.append(self._build_attendance_table(payslip, text))
        elements.append(Spacer(1, 10))

        elements.append(Paragraph(text["earnings"], heading_style))
        elements.append(self._build_lines_table(payslip.earnings, text["total_earnings"], payslip.total_earnings))

        elements.append(Paragraph(text["deductions"], heading_style))
        elements.append(self._build_lines_table(
            payslip.deductions, text["total_deductions"], payslip.total_deductions
        ))
        elements.append(Spacer(1, 10))

        elements.append(self._build_net_pay(payslip, text))

        if payslip.employer_costs:
            elements.append(Paragraph(text["employer_costs"], heading_style))
            elements.append(self._build_lines_table(
                payslip.employer_costs, text["total_employer_cost"], payslip.total_employer_cost
            ))

        if payslip.notes:
            elements.append(Spacer(1, 10))
            elements.append(Paragraph(payslip.notes, normal_style))

        elements.append(Spacer(1, 20))
        elements.append(Paragraph(text["footer"], right_style))

        doc.build(elements)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"Rendered payslip PDF for {payslip.employee_number} ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _build_employee_section(self, payslip: Payslip, text: Dict[str, str], normal_style):
        left = f"""
        <b>{text['employee_number']}:</b> {payslip.employee_number}<br/>
        <b>{text['name']}:</b> {payslip.employee_name}<br/>
        <b>{text['position']}:</b> {payslip.position or '-'}<br/>
        <b>{text['department']}:</b> {payslip.department or '-'}<br/>
        """
        right = f"""
        <b>{text['period']}:</b> {payslip.period_name}<br/>
        <b>{text['payment_date']}:</b> {payslip.payment_date.strftime('%d/%m/%Y')}<br/>
        """
        if payslip.ptkp_status:
            right += f"<b>PTKP:</b> {payslip.ptkp_status}<br/>"

        table = Table([[Paragraph(left, normal_style), Paragraph(right, normal_style)]], colWidths=[260, 210])
        table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        return table

    def _build_attendance_table(self, payslip: Payslip, text: Dict[str, str]):
        data = [
            [
                text["working_days"],
                text["present_days"],
                text["absent_days"],
                text["late_days"],
                text["overtime_hours"],
            ],
            [
                str(payslip.working_days),
                str(payslip.present_days),
                str(payslip.absent_days),
                str(payslip.late_days),
                f"{payslip.overtime_hours.normalize():f}",
            ],
        ]
        table = Table(data, colWidths=[94, 94, 94, 94, 94])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ]))
        return table

    def _build_lines_table(self, lines: List[PayslipLine], total_label: str, total: Decimal):
        data = []
        indented_rows = []
        for line in lines:
            data.append([line.name, format_rupiah(line.amount)])
            for item in line.breakdown:
                indented_rows.append(len(data))
                data.append([f"    {item.name}", format_rupiah(item.amount)])
        data.append([total_label, format_rupiah(total)])

        style = [
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('LINEABOVE', (0, -1), (-1, -1), 1, colors.black),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ]
        for row in indented_rows:
            style.append(('TEXTCOLOR', (0, row), (-1, row), colors.grey))

        table = Table(data, colWidths=[320, 150])
        table.setStyle(TableStyle(style))
        return table

    def _build_net_pay(self, payslip: Payslip, text: Dict[str, str]):
        table = Table([[text["net_pay"], format_rupiah(payslip.net_pay)]], colWidths=[320, 150])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#f8f9fa')),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('ALIGN', (1, 0), (1, 0), 'RIGHT'),
            ('BOX', (0, 0), (-1, -1), 1, HEADER_COLOR),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        return table
