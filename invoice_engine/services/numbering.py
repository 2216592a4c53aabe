import re
import logging
from typing import Iterable

from invoice_engine.modules.recurring import generate_invoice_number

logger = logging.getLogger(__name__)


class NumberingService:
    """Invoice numbers for recurring instances and manual series."""

    def next_recurring_number(self, base_number: str, generated_count: int) -> str:
        """
        Number for the next invoice materialized from a template whose own
        number is base_number and which has already produced generated_count.
        """
        return generate_invoice_number(base_number, generated_count + 1)

    def next_in_series(self, prefix: str, existing_numbers: Iterable[str], width: int = 4) -> str:
        """
        Scans existing numbers sharing the prefix for the highest trailing
        sequence and returns the one after it.
        """
        max_seq = 0
        max_width = width
        pattern = re.compile(rf"^{re.escape(prefix)}([0-9]+)$")

        for number in existing_numbers:
            match = pattern.match(number or "")
            if match:
                digits = match.group(1)
                seq = int(digits)
                if seq > max_seq:
                    max_seq = seq
                    max_width = max(width, len(digits))

        next_number = f"{prefix}{max_seq + 1:0{max_width}d}"
        logger.debug(f"Next number in series {prefix!r}: {next_number}")
        return next_number
