class InvoiceEngineError(Exception):
    """Base class for all engine errors."""


class InvalidFrequencyError(InvoiceEngineError, ValueError):
    def __init__(self, frequency):
        self.frequency = frequency
        super().__init__(f"Invalid frequency: {frequency}")


class InvalidScheduleError(InvoiceEngineError, ValueError):
    pass


class InvalidInvoiceNumberError(InvoiceEngineError, ValueError):
    pass


class UnsupportedCurrencyError(InvoiceEngineError, ValueError):
    def __init__(self, code):
        self.code = code
        super().__init__(f"Unsupported currency: {code}")


class CurrencyMismatchError(InvoiceEngineError, ValueError):
    pass


class RateSourceError(InvoiceEngineError):
    """Raised by a rate source when a fetch fails."""
