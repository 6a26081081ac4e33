from termfees.modules.payments.models import FeePayment, PaymentApplication

__all__ = ["FeePayment", "PaymentApplication"]
