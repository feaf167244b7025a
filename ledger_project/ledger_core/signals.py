from django.dispatch import Signal, receiver

from .conf import book_payments
from .models import Payment

# Sent after a payment is stored, inside the same database transaction.
# Keyword arguments: payment, user
payment_created = Signal()


@receiver(payment_created, sender=Payment)
def book_payment_journal(sender, payment, user=None, **kwargs):
    """Book the cash receipt when payment journaling is switched on."""
    if not book_payments():
        return
    # services import models and this module; resolve at call time
    from .services.payment import book_payment_entry

    # an exception here rolls the payment back with the entry
    book_payment_entry(payment, user=user)
