"""Custom signals for the registration app.

Signals:
    registration_paid: Sent once when a registration transitions from
        PENDING to PAID, by whichever path won the transition.
        Sender: The ``Registration`` class.
        Kwargs:
            registration: The ``Registration`` instance that was paid.
            source: ``"webhook"`` or ``"on_demand"``.
    checkout_completed: Sent for ``checkout.session.completed`` events that
        do not reference a registration, so other apps can claim them.
        Sender: The webhook handler class.
        Kwargs:
            session: The checkout session ``data.object`` dict.
            metadata: The session metadata dict.
"""

from django.dispatch import Signal

registration_paid = Signal()
checkout_completed = Signal()
