"""
Shared service dependencies
"""

from ..config import get_config
from ..servicing import LoanServicer
from ..storage import InMemoryStorage, StorageInterface


class ServicingSystem:
    """Loan servicing components wired to one storage backend"""

    def __init__(self, storage: StorageInterface = None):
        self.storage = storage or InMemoryStorage()
        self.loan_servicer = LoanServicer(
            self.storage,
            penalty_rate_percent=get_config().default_penalty_rate_percent
        )


# Global servicing system instance
servicing_system = ServicingSystem()


# Dependency to get servicing system
def get_servicing_system() -> ServicingSystem:
    return servicing_system
