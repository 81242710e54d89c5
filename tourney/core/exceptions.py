"""
Domain errors raised by the tournament services

Business-rule rejections (closed, full, unfunded) are expected outcomes and
are surfaced to callers as-is. Transient errors are left for the next
scheduler pass to retry.
"""


class TournamentError(Exception):
    """Base class for all tournament domain errors"""


class ValidationError(TournamentError):
    """Malformed tournament definition or attempt; never retried"""


class NotFound(TournamentError):
    """Referenced tournament or participant does not exist"""


class AttemptRejected(TournamentError):
    """An attempt was refused by a business rule"""


class TournamentClosed(AttemptRejected):
    """Tournament is finished or outside its play window"""


class CapacityExceeded(AttemptRejected):
    """Tournament already has its maximum number of participants"""


class InsufficientFunds(AttemptRejected):
    """Wallet balance cannot cover the requested debit"""


class TransientError(TournamentError):
    """Retryable failure from an external collaborator or the database"""


class PaymentRejected(TournamentError):
    """Payment network permanently refused a transfer"""


class ConcurrencyLost(TournamentError):
    """Another settlement runner already finalized the tournament"""
