from genledger.models.credit_account import CreditAccount
from genledger.models.credit_transaction import CreditTransaction
from genledger.models.failed_job import FailedJob
from genledger.models.generation_job import GenerationJob
from genledger.models.project import Project

__all__ = [
    "CreditAccount",
    "CreditTransaction",
    "FailedJob",
    "GenerationJob",
    "Project",
]
