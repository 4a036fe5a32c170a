from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock


class BaseService:
    """
    Shared constructor for kernel services.

    Kernel services only ``flush()``. Committing belongs to whoever opened
    the unit of work, which lets event ingestion create an entry, post it
    and record the processed event in one transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
