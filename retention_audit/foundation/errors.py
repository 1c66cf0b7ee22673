"""Exception types raised by the retention audit toolkit."""

from __future__ import annotations


class RetentionAuditError(Exception):
    """Base class for all retention audit errors."""


class InvalidArgumentError(RetentionAuditError, ValueError):
    """A caller-supplied argument is out of range or of the wrong type.

    Raised, for example, when the target order index ``n`` is not an
    integer or is smaller than 2. Fatal to the single invocation only.
    """


class UpstreamDataError(RetentionAuditError, ValueError):
    """Ranked-order data supplied by an upstream source is malformed.

    Attributes
    ----------
    record_index:
        Position of the offending record in the input, when known.
    customer_id:
        Customer whose records violated the contract, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        record_index: int | None = None,
        customer_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.record_index = record_index
        self.customer_id = customer_id
