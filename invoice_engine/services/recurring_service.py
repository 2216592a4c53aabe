import datetime
import logging
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from invoice_engine.modules.models import InvoiceTotals, RecurringSchedule
from invoice_engine.modules.recurring import (
    reference_day,
    advance_schedule,
    calculate_due_date,
    future_generation_dates,
    should_generate,
    should_stop_recurring,
    validate_schedule,
)
from invoice_engine.modules.errors import (
    InvalidInvoiceNumberError,
    InvalidScheduleError,
    InvoiceEngineError,
)
from invoice_engine.services.invoice_store import InvoiceState, rehydrate
from invoice_engine.services.numbering import NumberingService

logger = logging.getLogger(__name__)


class RecurringTemplate(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    base_invoice: InvoiceState
    schedule: RecurringSchedule
    generated_numbers: List[str] = []
    last_generated_at: Optional[datetime.date] = None

    @property
    def base_invoice_number(self) -> str:
        return self.base_invoice.invoice_number


class GeneratedInvoice(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    number: str
    invoice_date: datetime.date
    due_date: datetime.date
    template_id: str
    invoice: InvoiceState

    @property
    def totals(self) -> InvoiceTotals:
        return self.invoice.totals


class RecurringService:
    """
    Owns recurring templates and materializes invoices from them.

    The template is the only writer of its schedule: every generation replaces
    the schedule with the advanced copy.
    """

    def __init__(self, payment_terms_days: int = 30, numbering: Optional[NumberingService] = None):
        self.payment_terms_days = payment_terms_days
        self.numbering = numbering or NumberingService()
        self.templates: Dict[str, RecurringTemplate] = {}
        self.generated: Dict[str, List[GeneratedInvoice]] = {}

    def create_template(self, base_invoice: InvoiceState, schedule: RecurringSchedule,
                        name: Optional[str] = None) -> RecurringTemplate:
        if not base_invoice.invoice_number or not base_invoice.invoice_number.strip():
            raise InvalidInvoiceNumberError("Recurring template needs a base invoice number")
        errors = validate_schedule(schedule)
        if errors:
            raise InvalidScheduleError("; ".join(errors))
        template = RecurringTemplate(
            name=name or f"Recurring {base_invoice.invoice_number}",
            base_invoice=base_invoice,
            schedule=schedule,
        )
        self.templates[template.id] = template
        self.generated[template.id] = []
        return template

    def get_template(self, template_id: str) -> RecurringTemplate:
        if template_id not in self.templates:
            raise KeyError(f"Unknown recurring template: {template_id}")
        return self.templates[template_id]

    def generated_invoices(self, template_id: str) -> List[GeneratedInvoice]:
        self.get_template(template_id)
        return list(self.generated[template_id])

    def toggle_template(self, template_id: str, is_active: bool) -> RecurringTemplate:
        """Explicit pause/resume. Resuming never happens implicitly."""
        template = self.get_template(template_id)
        template.schedule = template.schedule.model_copy(update={"is_active": is_active})
        logger.info(f"Template {template_id} {'resumed' if is_active else 'paused'}")
        return template

    def generate_from_template(self, template_id: str, now=None) -> Optional[GeneratedInvoice]:
        """
        Materializes the next invoice if the template is active and due, else None.
        The new invoice copies the template's base invoice, re-priced and re-totalled.
        """
        template = self.get_template(template_id)
        if not should_generate(template.schedule, now):
            return None

        today = reference_day(now)
        number = self.numbering.next_recurring_number(
            template.base_invoice_number, len(template.generated_numbers)
        )
        state = rehydrate({
            **template.base_invoice.model_dump(exclude={"totals"}),
            "invoice_number": number,
            "invoice_date": today,
        })
        invoice = GeneratedInvoice(
            number=number,
            invoice_date=today,
            due_date=calculate_due_date(today, self.payment_terms_days),
            template_id=template.id,
            invoice=state,
        )

        self.generated[template.id].append(invoice)
        template.generated_numbers.append(number)
        template.last_generated_at = today
        template.schedule = advance_schedule(template.schedule, now)

        logger.info(f"Generated {number} from template {template.id}")
        return invoice

    def generate_all_due(self, now=None) -> List[GeneratedInvoice]:
        """Generates every due template; a failing template is logged and skipped."""
        generated = []
        for template_id in list(self.templates):
            try:
                invoice = self.generate_from_template(template_id, now)
            except InvoiceEngineError as e:
                logger.error(f"Failed to generate invoice from template {template_id}: {e}", exc_info=True)
                continue
            if invoice:
                generated.append(invoice)
        return generated

    def upcoming_dates(self, template_id: str, count: int = 5) -> List[datetime.date]:
        template = self.get_template(template_id)
        if not template.schedule.is_active:
            return []
        return future_generation_dates(template.schedule, limit=count)

    def auto_pause_completed(self, now=None) -> List[str]:
        """Deactivates active templates whose end date or occurrence limit has been reached."""
        paused = []
        for template in self.templates.values():
            if template.schedule.is_active and should_stop_recurring(template.schedule, now):
                self.toggle_template(template.id, False)
                paused.append(template.id)
        return paused

    def statistics(self, now=None) -> Dict[str, int]:
        today = reference_day(now)
        if today.month == 12:
            next_month = datetime.date(today.year + 1, 1, 1)
        else:
            next_month = datetime.date(today.year, today.month + 1, 1)

        templates = list(self.templates.values())
        active = [t for t in templates if t.schedule.is_active]
        return {
            "total_templates": len(templates),
            "active_templates": len(active),
            "paused_templates": len(templates) - len(active),
            "total_generated": sum(len(t.generated_numbers) for t in templates),
            "upcoming_this_month": sum(
                1 for t in active if today <= t.schedule.next_generation_date < next_month
            ),
        }
