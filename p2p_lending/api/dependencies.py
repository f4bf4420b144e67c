"""
Application wiring and request dependencies
"""

from typing import Optional

from fastapi import Request

from ..config import LendingConfig, get_config
from ..storage import StorageInterface, create_storage
from ..loans import LoanRepository, LoanService


class LendingSystem:
    """Lending components built around one storage backend"""
    
    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[LendingConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        
        self.loan_repository = LoanRepository(self.storage)
        self.loan_service = LoanService(
            self.loan_repository,
            roi_precision=self.config.roi_precision,
            days_per_year=self.config.days_per_year
        )
    
    def close(self) -> None:
        self.storage.close()


def get_lending_system(request: Request) -> LendingSystem:
    """Lending system attached to the running application"""
    return request.app.state.lending_system


def get_loan_service(request: Request) -> LoanService:
    return get_lending_system(request).loan_service
