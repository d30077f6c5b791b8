"""
Interaction state machine - teaser dispatch, provider replies, payment reveal.

One LeadInteraction row per (lead, provider). Every status change is a
compare-and-swap through InteractionRepository.cas() and is committed before
any SMS or Stripe call, so no network call runs while a row lock is held and
concurrent requests see each other's transitions.

Flow:
    dispatch_teaser     NEW_LEAD -> TEASER_SENT (reminder: -> AWAIT_CONFIRM)
    handle_reply "Y"    TEASER_SENT/AWAIT_CONFIRM -> PAYMENT_LINK_SENT
    /lead/success       PAYMENT_LINK_SENT -> AWAITING_PAYMENT
    Stripe webhook      PAYMENT_LINK_SENT/AWAITING_PAYMENT -> PAID -> REVEAL_DETAILS_SENT -> DONE
    handle_reply "N"    TEASER_SENT/AWAIT_CONFIRM -> EXPIRED
    handle_reply STOP   every pre-payment interaction of the provider -> OPTED_OUT
    expire_stale        teaser/payment stage past TTL -> EXPIRED
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from leadgate.config import get_settings
from leadgate.database import async_session_factory
from leadgate.errors import RevealFailedError, UpstreamError
from leadgate.models.interaction import (
    InteractionStatus,
    LeadInteraction,
    PAYMENT_STAGE,
    PRE_PAYMENT_STATUSES,
    TEASER_STAGE,
)
from leadgate.models.lead import Lead
from leadgate.models.provider import Provider
from leadgate.repositories import (
    InteractionRepository,
    LeadRepository,
    OptOutRepository,
    PolicyRepository,
    ProviderRepository,
)
from leadgate.services import notifications as render
from leadgate.services.compliance import (
    ReplyIntent,
    check_quiet_hours,
    classify_reply,
    extract_lead_reference,
)
from leadgate.services.notifications import Notifier
from leadgate.services.payments import (
    LEAD_ACCESS_PURPOSE,
    CheckoutCompleted,
    PaymentLinkBridge,
)
from leadgate.services.policy import Policy, get_policy
from leadgate.utils.alerting import AlertType, send_alert
from leadgate.utils.phone import phone_lookup_candidates
from leadgate.utils.timezone import as_utc, is_past, utcnow

logger = logging.getLogger(__name__)

S = InteractionStatus

# A minting claim older than this is considered abandoned and may be taken over
CLAIM_TIMEOUT = timedelta(seconds=60)

# A PAID interaction whose reveal has not gone out may be retried after this long
REVEAL_RETRY_AFTER = timedelta(seconds=60)


@dataclass(frozen=True)
class DispatchResult:
    provider_id: str
    outcome: str  # sent | queued | skipped | failed
    reason: Optional[str] = None
    status: Optional[str] = None


@dataclass
class TeaserBatchResult:
    sent: int = 0
    queued: int = 0
    skipped: int = 0
    failed: int = 0
    results: list[DispatchResult] = field(default_factory=list)

    def add(self, result: DispatchResult) -> None:
        self.results.append(result)
        if result.outcome == "sent":
            self.sent += 1
        elif result.outcome == "queued":
            self.queued += 1
        elif result.outcome == "skipped":
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "providers_notified": self.sent,
            "providers_queued": self.queued,
            "providers_skipped": self.skipped,
            "providers_failed": self.failed,
            "teaser_results": [
                {"provider_id": r.provider_id, "outcome": r.outcome, "reason": r.reason}
                for r in self.results
            ],
        }


@dataclass(frozen=True)
class ReplyResult:
    # payment_link_sent | link_resent | payment_link_pending | declined | opted_out |
    # expired | status | unknown_response | unknown_provider | no_active_lead | skipped
    action: str
    lead_id: Optional[str] = None
    provider_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    # revealed | duplicate | ignored | unmatched | conflict
    outcome: str
    lead_id: Optional[str] = None
    provider_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


class InteractionService:
    """
    Owns every LeadInteraction transition.

    Repositories are built from the session unless injected. notifier, payments
    and clock are the seams tests replace.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        payments: Optional[PaymentLinkBridge] = None,
        clock: Callable[[], datetime] = utcnow,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self.db = db
        self.notifier = notifier or Notifier()
        self.payments = payments or PaymentLinkBridge()
        self.clock = clock
        self.session_factory = session_factory

        self.leads = LeadRepository(db)
        self.providers = ProviderRepository(db)
        self.interactions = InteractionRepository(db)
        self.opt_outs = OptOutRepository(db)
        self.policies = PolicyRepository(db)

    def _spawn(self, db: AsyncSession) -> "InteractionService":
        return InteractionService(
            db,
            notifier=self.notifier,
            payments=self.payments,
            clock=self.clock,
            session_factory=self.session_factory,
        )

    async def _cas(self, lead_id: str, provider_id: str, expected, extra_where=None, **values) -> bool:
        values.setdefault("updated_at", self.clock())
        won = await self.interactions.cas(lead_id, provider_id, expected, extra_where=extra_where, **values)
        await self.db.commit()
        return won

    async def _policy(self) -> Policy:
        return await get_policy(self.db, self.policies)

    # ------------------------------------------------------------------
    # Teasers
    # ------------------------------------------------------------------

    async def dispatch_teaser(
        self, lead: Lead, provider: Provider, policy: Optional[Policy] = None
    ) -> DispatchResult:
        """
        Offer one lead to one provider.
        Raises UpstreamError if the SMS fails; the row stays NEW_LEAD.
        """
        lead_id, provider_id = lead.lead_id, provider.id
        log_extra = {"lead_id": lead_id, "provider_id": provider_id}
        policy = policy or await self._policy()
        now = self.clock()

        if await self.opt_outs.is_opted_out(provider_id):
            logger.info("Provider opted out, skipping teaser", extra=log_extra)
            return DispatchResult(provider_id, "skipped", "opted_out")

        if not lead.is_active or is_past(lead.expires_at, now):
            return DispatchResult(provider_id, "skipped", "lead_expired")

        if policy.quiet_hours_enabled:
            hours = check_quiet_hours(policy.quiet_start, policy.quiet_end, provider.timezone, now)
            if not hours:
                logger.info("Quiet hours for provider, queueing: %s", hours.reason, extra=log_extra)
                return DispatchResult(provider_id, "queued", "quiet_hours")

        existing = await self.interactions.get(lead_id, provider_id)
        if existing is not None and existing.status_enum not in TEASER_STAGE | {S.NEW_LEAD}:
            return DispatchResult(provider_id, "skipped", "already_engaged", existing.status)

        reminder = existing is not None and existing.status_enum in TEASER_STAGE
        if existing is None:
            inserted = await self.interactions.insert_if_absent(lead_id, provider_id)
            await self.db.commit()
            if not inserted:
                # A concurrent dispatch created the row first and owns this send
                logger.info("Teaser already being dispatched", extra=log_extra)
                return DispatchResult(provider_id, "skipped", "in_progress")

        result = await self.notifier.send(provider.phone, render.render_teaser(lead, policy))
        if not result.success:
            logger.warning("Teaser SMS failed: %s", result.error, extra={**log_extra, "error_code": result.error_code})
            raise UpstreamError(f"Teaser SMS failed: {result.error}", service="sms", error_code=result.error_code)

        if reminder:
            won = await self._cas(lead_id, provider_id, TEASER_STAGE, status=S.AWAIT_CONFIRM, last_sent_at=now)
            status = S.AWAIT_CONFIRM
        else:
            won = await self._cas(
                lead_id, provider_id, [S.NEW_LEAD],
                status=S.TEASER_SENT,
                last_sent_at=now,
                ttl_expires_at=now + timedelta(hours=policy.ttl_hours),
            )
            status = S.TEASER_SENT

        if not won:
            current = await self.interactions.get(lead_id, provider_id)
            logger.warning(
                "Teaser sent but interaction moved concurrently to %s",
                current.status if current else None, extra=log_extra,
            )
            status = current.status_enum if current else status

        logger.info("Teaser sent (%s)", "reminder" if reminder else "first", extra=log_extra)
        return DispatchResult(provider_id, "sent", "reminder" if reminder else None, str(status))

    async def dispatch_teasers(
        self, lead: Lead, providers: list[Provider], concurrency: Optional[int] = None
    ) -> TeaserBatchResult:
        """
        Fan out one teaser task per provider, each with its own session.
        A failure for one provider never aborts the others.
        """
        session_factory = self.session_factory or async_session_factory
        semaphore = asyncio.Semaphore(concurrency or get_settings().teaser_concurrency)
        policy = await self._policy()

        async def _one(provider: Provider) -> DispatchResult:
            async with semaphore:
                async with session_factory() as session:
                    try:
                        return await self._spawn(session).dispatch_teaser(lead, provider, policy)
                    except UpstreamError:
                        await session.rollback()
                        return DispatchResult(provider.id, "failed", "sms_failed")
                    except Exception as e:
                        await session.rollback()
                        logger.exception(
                            "Teaser dispatch failed: %s", str(e),
                            extra={"lead_id": lead.lead_id, "provider_id": provider.id},
                        )
                        return DispatchResult(provider.id, "failed", "error")

        batch = TeaserBatchResult()
        for result in await asyncio.gather(*(_one(p) for p in providers)):
            batch.add(result)

        logger.info(
            "Teasers dispatched: sent=%d queued=%d skipped=%d failed=%d",
            batch.sent, batch.queued, batch.skipped, batch.failed,
            extra={"lead_id": lead.lead_id},
        )
        return batch

    # ------------------------------------------------------------------
    # Provider replies
    # ------------------------------------------------------------------

    async def handle_reply(self, from_phone: str, text: str, lead_id: Optional[str] = None) -> ReplyResult:
        provider = await self.providers.find_by_phone(phone_lookup_candidates(from_phone))
        if provider is None:
            logger.info("Reply from unknown phone", extra={"phone": from_phone})
            return ReplyResult("unknown_provider")

        provider_id = provider.id
        intent = classify_reply(text)
        lead_ref = lead_id or extract_lead_reference(text)

        if intent == ReplyIntent.STOP:
            return await self._opt_out(provider, lead_ref)

        if await self.opt_outs.is_opted_out(provider_id):
            return ReplyResult("skipped", lead_ref, provider_id, reason="opted_out")

        if intent == ReplyIntent.UNKNOWN:
            logger.info(
                "Unrecognized reply %r", (text or "")[:40],
                extra={"lead_id": lead_ref, "provider_id": provider_id},
            )
            return ReplyResult("unknown_response", lead_ref, provider_id)

        if lead_ref:
            interaction = await self.interactions.get(lead_ref, provider_id)
        else:
            interaction = await self.interactions.most_recent_for_provider(provider_id)

        if interaction is None:
            logger.info("No active lead for reply", extra={"lead_id": lead_ref, "provider_id": provider_id})
            return ReplyResult("no_active_lead", lead_ref, provider_id)

        if intent == ReplyIntent.YES:
            return await self._handle_yes(provider, interaction)
        return await self._handle_no(provider, interaction)

    async def _reply(self, provider: Provider, text: str, lead_id: Optional[str]) -> bool:
        result = await self.notifier.send(provider.phone, text)
        if not result.success:
            logger.warning(
                "Reply SMS failed: %s", result.error,
                extra={"lead_id": lead_id, "provider_id": provider.id, "error_code": result.error_code},
            )
        return result.success

    async def _status_reply(self, provider: Provider, interaction: LeadInteraction) -> ReplyResult:
        await self._reply(provider, render.render_status(interaction.lead_id, interaction.status), interaction.lead_id)
        return ReplyResult("status", interaction.lead_id, provider.id, interaction.status)

    async def _lead_available(self, lead_id: str, now: datetime) -> bool:
        lead = await self.leads.get(lead_id)
        return lead is not None and lead.is_active and not is_past(lead.expires_at, now)

    async def _handle_yes(self, provider: Provider, interaction: LeadInteraction) -> ReplyResult:
        lead_id, provider_id = interaction.lead_id, provider.id
        status = interaction.status_enum
        now = self.clock()

        if status not in TEASER_STAGE | PAYMENT_STAGE:
            return await self._status_reply(provider, interaction)

        ttl_passed = is_past(interaction.ttl_expires_at, now)

        if status in PAYMENT_STAGE:
            link_live = interaction.payment_link_url and not is_past(interaction.payment_link_expires_at, now)
            if link_live and not ttl_passed:
                await self._reply(provider, render.render_link_resend(lead_id, interaction.payment_link_url), lead_id)
                return ReplyResult("link_resent", lead_id, provider_id, interaction.status, url=interaction.payment_link_url)
            # Stale offer: a fresh link restarts the TTL as long as the lead is still for sale
            ttl_passed = False

        if ttl_passed or not await self._lead_available(lead_id, now):
            await self._cas(lead_id, provider_id, [status], status=S.EXPIRED)
            await self._reply(provider, render.render_lead_unavailable(lead_id), lead_id)
            current = await self.interactions.get(lead_id, provider_id)
            return ReplyResult("expired", lead_id, provider_id, current.status if current else None)

        return await self._issue_link(provider, interaction, now)

    async def _issue_link(self, provider: Provider, interaction: LeadInteraction, now: datetime) -> ReplyResult:
        """Claim minting rights, mint one checkout session, record it, send it."""
        lead_id, provider_id = interaction.lead_id, provider.id
        status = interaction.status_enum
        log_extra = {"lead_id": lead_id, "provider_id": provider_id}

        claim_key = f"lead-access-{lead_id}-{provider_id}-{uuid.uuid4().hex}"
        claimable = or_(
            LeadInteraction.idempotency_key.is_(None),
            LeadInteraction.payment_link_claimed_at.is_(None),
            LeadInteraction.payment_link_claimed_at <= now - CLAIM_TIMEOUT,
        )
        if not await self._cas(
            lead_id, provider_id, [status], extra_where=claimable,
            idempotency_key=claim_key, payment_link_claimed_at=now,
        ):
            logger.info("Payment link already being minted", extra=log_extra)
            return ReplyResult("payment_link_pending", lead_id, provider_id, interaction.status)

        policy = await self._policy()
        try:
            link = await self.payments.issue_lead_access_link(lead_id, provider_id, policy, claim_key)
        except UpstreamError:
            await self._cas(
                lead_id, provider_id, [status],
                extra_where=LeadInteraction.idempotency_key == claim_key,
                idempotency_key=None, payment_link_claimed_at=None,
            )
            raise

        # Reissuing from AWAITING_PAYMENT keeps that status; only the link changes
        target = S.PAYMENT_LINK_SENT if status in TEASER_STAGE else status
        refreshed = {}
        if status in PAYMENT_STAGE:
            refreshed["ttl_expires_at"] = now + timedelta(hours=policy.ttl_hours)
        recorded = await self._cas(
            lead_id, provider_id, [status],
            extra_where=LeadInteraction.idempotency_key == claim_key,
            status=target,
            payment_link_url=link.url,
            checkout_session_id=link.session_id,
            payment_link_expires_at=link.expires_at,
            last_sent_at=now,
            **refreshed,
        )
        if not recorded:
            # Opted out or expired while minting; the new session must not stay payable
            await self.payments.expire_checkout_session(link.session_id)
            current = await self.interactions.get(lead_id, provider_id)
            logger.warning(
                "Minted link discarded, interaction moved to %s",
                current.status if current else None, extra=log_extra,
            )
            return ReplyResult("status", lead_id, provider_id, current.status if current else None, reason="concurrent_change")

        hours = max(1, round((as_utc(link.expires_at) - now).total_seconds() / 3600))
        if not await self._reply(provider, render.render_payment_link(lead_id, link.url, policy, hours), lead_id):
            await send_alert(
                AlertType.SMS_DELIVERY_FAILED,
                f"Payment link SMS failed for lead {lead_id}",
                severity="warning",
                extra=log_extra,
            )
            return ReplyResult("payment_link_sent", lead_id, provider_id, str(target), reason="sms_failed", url=link.url)

        logger.info("Payment link sent", extra=log_extra)
        return ReplyResult("payment_link_sent", lead_id, provider_id, str(target), url=link.url)

    async def _handle_no(self, provider: Provider, interaction: LeadInteraction) -> ReplyResult:
        lead_id, provider_id = interaction.lead_id, provider.id
        if interaction.status_enum not in TEASER_STAGE:
            return await self._status_reply(provider, interaction)

        if not await self._cas(lead_id, provider_id, TEASER_STAGE, status=S.EXPIRED):
            current = await self.interactions.get(lead_id, provider_id)
            return await self._status_reply(provider, current)

        await self._reply(provider, render.render_decline(lead_id), lead_id)
        logger.info("Provider declined lead", extra={"lead_id": lead_id, "provider_id": provider_id})
        return ReplyResult("declined", lead_id, provider_id, S.EXPIRED.value)

    async def _opt_out(self, provider: Provider, lead_ref: Optional[str]) -> ReplyResult:
        """Permanent, global opt-out. Idempotent; only the first STOP is confirmed."""
        provider_id = provider.id
        first = await self.opt_outs.add(provider_id, reason="sms_stop")
        await self.db.commit()

        open_sessions = []
        for interaction in await self.interactions.list_for_provider(provider_id, PRE_PAYMENT_STATUSES):
            won = await self._cas(
                interaction.lead_id, provider_id, [interaction.status_enum], status=S.OPTED_OUT,
            )
            if won and interaction.checkout_session_id:
                open_sessions.append(interaction.checkout_session_id)

        for session_id in open_sessions:
            await self.payments.expire_checkout_session(session_id)

        if first:
            await self._reply(provider, render.render_opt_out(lead_ref), lead_ref)
            logger.info("Provider opted out", extra={"provider_id": provider_id})

        return ReplyResult(
            "opted_out", lead_ref, provider_id, S.OPTED_OUT.value,
            reason=None if first else "already_opted_out",
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def mark_awaiting_payment(self, lead_id: str, provider_id: str) -> bool:
        """Checkout success redirect. No-op unless the link is outstanding."""
        return await self._cas(lead_id, provider_id, [S.PAYMENT_LINK_SENT], status=S.AWAITING_PAYMENT)

    async def handle_payment_completed(self, event: CheckoutCompleted) -> PaymentResult:
        """
        Unlock and reveal after a paid checkout.
        Raises RevealFailedError when the lead or provider record is missing,
        UpstreamError when the reveal SMS fails (status stays PAID for retry).
        """
        lead_id, provider_id = event.lead_id, event.provider_id
        log_extra = {"lead_id": lead_id, "provider_id": provider_id, "event_type": event.event_type}

        if not lead_id or not provider_id or event.purpose != LEAD_ACCESS_PURPOSE:
            logger.warning("Checkout completed without lead access metadata", extra=log_extra)
            return PaymentResult("ignored", lead_id, provider_id, reason="not_lead_access")

        now = self.clock()
        unlocked = await self._cas(
            lead_id, provider_id, PAYMENT_STAGE,
            status=S.PAID,
            unlocked_at=now,
            payment_intent_id=event.payment_intent_id,
            amount_cents=event.amount_cents,
            currency=event.currency,
        )

        if not unlocked:
            outcome = await self._reconcile_lost_unlock(event, now)
            if outcome is not None:
                return outcome

        lead = await self.leads.get(lead_id)
        provider = await self.providers.get(provider_id)
        if lead is None or provider is None:
            missing = "lead" if lead is None else "provider"
            logger.critical("Paid reveal impossible, %s record missing", missing, extra=log_extra)
            await send_alert(
                AlertType.REVEAL_FAILED,
                f"Payment {event.payment_intent_id} succeeded but {missing} is missing. Manual follow-up needed.",
                severity="critical",
                extra={"lead_id": lead_id, "provider_id": provider_id, "payment_intent_id": event.payment_intent_id},
                cooldown_key=f"{lead_id}:{provider_id}",
            )
            raise RevealFailedError(
                f"{missing} record missing for paid interaction",
                lead_id=lead_id, provider_id=provider_id, payment_intent_id=event.payment_intent_id,
            )

        result = await self.notifier.send(provider.phone, render.render_reveal(lead))
        if not result.success:
            await send_alert(
                AlertType.SMS_DELIVERY_FAILED,
                f"Reveal SMS failed for paid lead {lead_id}: {result.error}",
                severity="error",
                extra={"lead_id": lead_id, "provider_id": provider_id},
                cooldown_key=f"{lead_id}:{provider_id}",
            )
            raise UpstreamError(f"Reveal SMS failed: {result.error}", service="sms", error_code=result.error_code)

        await self._cas(lead_id, provider_id, [S.PAID], status=S.REVEAL_DETAILS_SENT)
        await self._cas(lead_id, provider_id, [S.REVEAL_DETAILS_SENT], status=S.DONE)
        logger.info("Payment confirmed and details revealed", extra=log_extra)
        return PaymentResult("revealed", lead_id, provider_id, S.DONE.value)

    async def _reconcile_lost_unlock(self, event: CheckoutCompleted, now: datetime) -> Optional[PaymentResult]:
        """
        The PAID CAS lost. Returns a final PaymentResult, or None when this
        call should resume an interrupted reveal.
        """
        lead_id, provider_id = event.lead_id, event.provider_id
        log_extra = {"lead_id": lead_id, "provider_id": provider_id}
        current = await self.interactions.get(lead_id, provider_id)

        if current is None:
            logger.warning("Payment for unknown lead/provider pair", extra=log_extra)
            return PaymentResult("unmatched", lead_id, provider_id, reason="unknown_interaction")

        status = current.status_enum
        same_payment = current.payment_intent_id == event.payment_intent_id

        if status in (S.REVEAL_DETAILS_SENT, S.DONE) and same_payment:
            logger.info("Duplicate payment webhook ignored", extra=log_extra)
            return PaymentResult("duplicate", lead_id, provider_id, current.status)

        if status == S.PAID and same_payment:
            # Only one resumer at a time; a delivery racing the first attempt backs off
            resumable = and_(
                LeadInteraction.payment_intent_id == event.payment_intent_id,
                LeadInteraction.updated_at <= now - REVEAL_RETRY_AFTER,
            )
            if await self._cas(lead_id, provider_id, [S.PAID], extra_where=resumable):
                logger.info("Resuming reveal for paid interaction", extra=log_extra)
                return None
            return PaymentResult("duplicate", lead_id, provider_id, current.status, reason="reveal_in_progress")

        await send_alert(
            AlertType.PAYMENT_UNMATCHED,
            f"Payment {event.payment_intent_id} received for interaction in {current.status}. "
            "Money moved without a reveal; refund or reveal manually.",
            severity="critical",
            extra={**log_extra, "payment_intent_id": event.payment_intent_id, "status": current.status},
            cooldown_key=f"{lead_id}:{provider_id}:{event.payment_intent_id}",
        )
        return PaymentResult("conflict", lead_id, provider_id, current.status, reason="status_conflict")

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    async def expire_stale(self, now: Optional[datetime] = None) -> dict:
        """Expire interactions past their TTL and deactivate leads past retention."""
        now = now or self.clock()
        expired = 0

        for interaction in await self.interactions.list_stale(now):
            status = interaction.status_enum
            if status in PAYMENT_STAGE:
                still_stale = or_(
                    LeadInteraction.payment_link_expires_at.is_(None),
                    LeadInteraction.payment_link_expires_at <= now,
                )
            else:
                still_stale = LeadInteraction.ttl_expires_at <= now
            if await self._cas(
                interaction.lead_id, interaction.provider_id, [status],
                extra_where=still_stale, status=S.EXPIRED, updated_at=now,
            ):
                expired += 1

        deactivated = await self.leads.deactivate_expired(now)
        await self.db.commit()

        if expired or deactivated:
            logger.info("Reaper expired %d interactions, deactivated %d leads", expired, deactivated)
        return {"interactions_expired": expired, "leads_deactivated": deactivated}
