"""
Request-scoped wiring for the interaction service.
Tests override these with app.dependency_overrides.
"""
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.database import async_session_factory, get_db
from leadgate.services.interactions import InteractionService
from leadgate.services.notifications import Notifier
from leadgate.services.payments import PaymentLinkBridge


def get_notifier() -> Notifier:
    return Notifier()


def get_payment_bridge() -> PaymentLinkBridge:
    return PaymentLinkBridge()


def get_session_factory() -> Callable[[], AsyncSession]:
    return async_session_factory


async def get_interaction_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    payments: PaymentLinkBridge = Depends(get_payment_bridge),
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
) -> InteractionService:
    return InteractionService(
        db, notifier=notifier, payments=payments, session_factory=session_factory,
    )
