"""Exception types shared across the indexer."""


class IndexerError(Exception):
    """Base class for indexer failures."""


class ProviderError(IndexerError):
    """Transient failure talking to the event provider (network, timeout)."""


class EventDecodeError(IndexerError):
    """A single raw event could not be decoded into a domain event."""

    def __init__(self, message: str, block_number: int = 0, log_index: int = 0,
                 transaction_id: str = ""):
        super().__init__(message)
        self.block_number = block_number
        self.log_index = log_index
        self.transaction_id = transaction_id


class DuplicateCodeError(IndexerError):
    """Generated referral code already belongs to another address."""


class PaymentError(IndexerError):
    """The payment sender failed to transfer funds to one recipient."""


class RangeFailedError(IndexerError):
    """A block range contained an event that could not be applied."""

    def __init__(self, from_block: int, to_block: int, failed_events: int):
        super().__init__(
            f"Range {from_block}-{to_block} has {failed_events} unresolved event failure(s)"
        )
        self.from_block = from_block
        self.to_block = to_block
        self.failed_events = failed_events


class ReferralRejected(IndexerError):
    """A referral registration was refused (unknown code, self-referral, already referred)."""
