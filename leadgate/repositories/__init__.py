"""
Repositories - one per aggregate, constructed per database session.
"""
from leadgate.repositories.leads import LeadRepository
from leadgate.repositories.providers import ProviderRepository
from leadgate.repositories.interactions import InteractionRepository
from leadgate.repositories.opt_outs import OptOutRepository
from leadgate.repositories.policy import PolicyRepository

__all__ = [
    "LeadRepository",
    "ProviderRepository",
    "InteractionRepository",
    "OptOutRepository",
    "PolicyRepository",
]
