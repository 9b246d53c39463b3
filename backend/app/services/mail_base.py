"""
HD Notes Backend: Abstract Notifier Interface
===============================================

What:  Contract for delivering one-time codes to a user.
How:   Concrete notifiers (SMTP, console) implement send_code(); OtpService
       only depends on this interface, so tests swap in a recording double.
"""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """
    Delivers a one-time code out of band.

    Contract:
        - send_code() returns normally once the message was handed to the
          transport, and raises NotificationDeliveryError when it could not
          be, after the implementation's own retries.
        - Implementations never log the raw code (ConsoleMailer excepted).
    """

    #: Short name reported by the health endpoint
    kind: str = "abstract"

    @abstractmethod
    async def send_code(
        self, to_email: str, code: str, purpose: str, ttl_seconds: int
    ) -> None:
        """
        Send `code` to `to_email`.

        Args:
            to_email:    normalized recipient address
            code:        the raw one-time code
            purpose:     "signup" or "signin", selects the wording
            ttl_seconds: validity of the code, quoted in the message

        Raises:
            NotificationDeliveryError: delivery failed after retries.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the transport looks reachable. Must not raise."""
        ...
