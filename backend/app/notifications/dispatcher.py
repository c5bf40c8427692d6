"""
dispatcher.py — Multi-channel notification fan-out.

This is the central coordinator that:
    1. Validates the notification and requested channels
    2. Applies per-recipient preference filtering
    3. Starts push in provider-sized chunks (one batch for all recipients)
    4. Sends email and SMS per recipient while the push batch is in flight
    5. Reduces per-channel results into a per-recipient outcome
    6. Appends every recipient's results to the history store
    7. Produces a DispatchSummary

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Validate        │  title + body required, channels parsed
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Preference      │  preferences[type] is False → filtered
    │     Filter          │  (skipped for emergency+critical / override)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  3. Push Batch      │  valid Expo tokens only, chunks of ≤100,
    │                     │  chunks sent concurrently; a failed chunk
    │                     │  fails only its own recipients
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  4. Per-Recipient   │  one task per recipient: its push slot,
    │     Tasks           │  email and SMS gathered together, then
    │                     │  OR-reduce and append to history
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  5. Summary         │  successful / failed / filtered counts,
    │                     │  per-channel attempted / succeeded / failed
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
ISOLATION
═══════════════════════════════════════════════════════════════════════════

Every provider call goes through ``_attempt``: it holds the channel's
semaphore (outbound concurrency bound), applies the per-call timeout and
converts any raise into a failed DispatchResult. Nothing a provider does
can escape ``dispatch``; partial failure is reported through counts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.app.core.errors import ChannelDeliveryError, ValidationError
from backend.app.notifications.channels.mail import EmailTransport, render_email
from backend.app.notifications.channels.push import (
    EXPO_MAX_CHUNK_SIZE,
    PushProvider,
    build_message,
    chunk_messages,
    is_valid_push_token,
)
from backend.app.notifications.channels.sms import (
    SmsMessage,
    SmsProvider,
    format_sms_body,
    normalize_phone,
)
from backend.app.notifications.history import NotificationHistoryStore
from backend.app.notifications.models import (
    Channel,
    ChannelCounts,
    DispatchResult,
    DispatchSummary,
    HistoryEntry,
    NO_CHANNEL,
    Notification,
    Recipient,
    RecipientOutcome,
    parse_channels,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Reducers
# ═══════════════════════════════════════════════════════════════════════════

def reduce_outcome(recipient_id: str, results: List[DispatchResult]) -> RecipientOutcome:
    """A recipient with no attempts is failed with reason "no channel"."""
    if not results:
        return RecipientOutcome(recipient_id=recipient_id, reason=NO_CHANNEL)
    outcome = RecipientOutcome(recipient_id=recipient_id, results=list(results))
    if not outcome.successful:
        outcome.reason = "; ".join(f"{r.channel.value}: {r.error}" for r in results)
    return outcome


def summarize(
    notification: Notification,
    outcomes: List[RecipientOutcome],
    channels: Iterable[Channel],
) -> DispatchSummary:
    summary = DispatchSummary(
        notification=notification,
        total_users=len(outcomes),
        per_channel_counts={c: ChannelCounts() for c in channels},
        outcomes=outcomes,
    )
    for outcome in outcomes:
        if outcome.filtered:
            summary.filtered += 1
        elif outcome.successful:
            summary.successful += 1
        else:
            summary.failed += 1
        for result in outcome.results:
            counts = summary.per_channel_counts.setdefault(result.channel, ChannelCounts())
            counts.attempted += 1
            if result.success:
                counts.succeeded += 1
            else:
                counts.failed += 1
    return summary


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class NotificationDispatcher:
    """
    Fans one Notification out to many recipients over push, email and SMS.

    Parameters
    ----------
    push, email, sms : providers
        Channel backends (simulation or production).
    history : NotificationHistoryStore
        Receives one entry per attempted recipient.
    sms_from : str
        Sender number for SMS.
    push_chunk_size : int
        Messages per push request, capped at the Expo maximum (100).
    channel_concurrency : int
        Max in-flight provider calls per channel.
    channel_timeout : float
        Seconds before a single provider call counts as failed.
    """

    def __init__(
        self,
        *,
        push: PushProvider,
        email: EmailTransport,
        sms: SmsProvider,
        history: NotificationHistoryStore,
        sms_from: str,
        push_chunk_size: int = EXPO_MAX_CHUNK_SIZE,
        channel_concurrency: int = 10,
        channel_timeout: float = 10.0,
    ) -> None:
        self._push = push
        self._email = email
        self._sms = sms
        self._history = history
        self._sms_from = sms_from
        self._chunk_size = push_chunk_size
        self._timeout = channel_timeout
        self._semaphores: Dict[Channel, asyncio.Semaphore] = {
            c: asyncio.Semaphore(channel_concurrency) for c in Channel
        }

    @property
    def providers(self) -> Dict[Channel, object]:
        return {Channel.PUSH: self._push, Channel.EMAIL: self._email, Channel.SMS: self._sms}

    async def dispatch(
        self,
        notification: Notification,
        recipients: Sequence[Recipient],
        channels: Iterable[Channel],
        *,
        sender_id: Optional[str] = None,
        override_preferences: bool = False,
    ) -> DispatchSummary:
        """
        Deliver ``notification`` to every recipient on the requested channels.

        Raises
        ------
        ValidationError
            Missing title / body or no channel requested. Raised before any
            provider is contacted.
        """
        notification.validate()
        requested = parse_channels(channels)
        if not requested:
            raise ValidationError("At least one channel is required", field="channels")

        started = time.monotonic()
        if not recipients:
            return summarize(notification, [], requested)

        bypass = override_preferences or notification.is_life_safety
        active: List[Tuple[int, Recipient]] = []
        outcomes: Dict[int, RecipientOutcome] = {}
        for idx, recipient in enumerate(recipients):
            if not bypass and not recipient.allows(notification.type):
                outcomes[idx] = RecipientOutcome(
                    recipient_id=recipient.id, filtered=True, reason="preference opt-out",
                )
            else:
                active.append((idx, recipient))

        # Push chunks run alongside email / SMS; each recipient awaits its own slot
        push_batch: Optional[asyncio.Task[Dict[int, DispatchResult]]] = None
        if Channel.PUSH in requested:
            push_batch = asyncio.ensure_future(self._push_batch(notification, active))

        try:
            delivered = await asyncio.gather(*(
                self._deliver_to_recipient(
                    notification, idx, recipient, requested, push_batch, sender_id,
                )
                for idx, recipient in active
            ))
        finally:
            if push_batch is not None and not push_batch.done():
                push_batch.cancel()
        for (idx, _), outcome in zip(active, delivered):
            outcomes[idx] = outcome

        summary = summarize(
            notification, [outcomes[i] for i in range(len(recipients))], requested,
        )
        logger.info(
            "Dispatch %s [%s/%s]: %d users, %d ok, %d failed, %d filtered",
            notification.notification_id,
            notification.type.value,
            notification.severity.value,
            summary.total_users,
            summary.successful,
            summary.failed,
            summary.filtered,
            extra={
                "notification_type": notification.type.value,
                "severity": notification.severity.value,
                "recipient_count": summary.total_users,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return summary

    # ── Single attempt (Result-style) ──

    async def _attempt(
        self,
        channel: Channel,
        recipient_id: str,
        call: Callable[[], Awaitable[str]],
    ) -> DispatchResult:
        async with self._semaphores[channel]:
            try:
                message_id = await asyncio.wait_for(call(), timeout=self._timeout)
            except asyncio.TimeoutError:
                return DispatchResult.failed(channel, recipient_id, f"timeout after {self._timeout:g}s")
            except ChannelDeliveryError as exc:
                logger.warning("[%s] %s: %s", channel.value.upper(), recipient_id, exc.reason)
                return DispatchResult.failed(channel, recipient_id, exc.reason)
            except Exception as exc:
                logger.exception("[%s] unexpected provider error for %s", channel.value.upper(), recipient_id)
                return DispatchResult.failed(channel, recipient_id, str(exc) or type(exc).__name__)
        return DispatchResult.delivered(channel, recipient_id, message_id)

    # ── Push ──

    async def _push_batch(
        self,
        notification: Notification,
        active: List[Tuple[int, Recipient]],
    ) -> Dict[int, DispatchResult]:
        targets = [(idx, r) for idx, r in active if is_valid_push_token(r.push_token)]
        if not targets:
            return {}

        batches = chunk_messages(targets, self._chunk_size)
        chunk_results = await asyncio.gather(*(
            self._send_push_chunk(notification, batch) for batch in batches
        ))
        results: Dict[int, DispatchResult] = {}
        for chunk in chunk_results:
            results.update(chunk)
        return results

    async def _send_push_chunk(
        self,
        notification: Notification,
        batch: List[Tuple[int, Recipient]],
    ) -> Dict[int, DispatchResult]:
        messages = [build_message(notification, r.push_token) for _, r in batch]
        async with self._semaphores[Channel.PUSH]:
            try:
                tickets = await asyncio.wait_for(self._push.send_chunk(messages), timeout=self._timeout)
            except asyncio.TimeoutError:
                reason = f"timeout after {self._timeout:g}s"
            except ChannelDeliveryError as exc:
                reason = exc.reason
            except Exception as exc:
                logger.exception("[PUSH] unexpected provider error")
                reason = str(exc) or type(exc).__name__
            else:
                if len(tickets) == len(batch):
                    return {
                        idx: (
                            DispatchResult.delivered(Channel.PUSH, r.id, t.id)
                            if t.ok else DispatchResult.failed(Channel.PUSH, r.id, t.error or "push rejected")
                        )
                        for (idx, r), t in zip(batch, tickets)
                    }
                reason = f"expected {len(batch)} tickets, got {len(tickets)}"

        logger.warning("[PUSH] chunk of %d failed: %s", len(batch), reason)
        return {idx: DispatchResult.failed(Channel.PUSH, r.id, reason) for idx, r in batch}

    # ── Email / SMS ──

    def _email_call(self, notification: Notification, recipient: Recipient) -> Callable[[], Awaitable[str]]:
        message = render_email(notification, recipient.email, recipient.name)
        return lambda: self._email.send(message)

    def _sms_call(self, notification: Notification, phone: str) -> Callable[[], Awaitable[str]]:
        message = SmsMessage(from_number=self._sms_from, to=phone, body=format_sms_body(notification))
        return lambda: self._sms.send(message)

    async def _deliver_to_recipient(
        self,
        notification: Notification,
        idx: int,
        recipient: Recipient,
        channels: List[Channel],
        push_batch: Optional[asyncio.Task[Dict[int, DispatchResult]]],
        sender_id: Optional[str],
    ) -> RecipientOutcome:
        attempts = []
        if push_batch is not None and is_valid_push_token(recipient.push_token):
            attempts.append(self._await_push(push_batch, idx))
        if Channel.EMAIL in channels and recipient.email:
            attempts.append(self._attempt(
                Channel.EMAIL, recipient.id, self._email_call(notification, recipient),
            ))
        phone = normalize_phone(recipient.phone_number) if recipient.phone_number else ""
        if Channel.SMS in channels and phone:
            attempts.append(self._attempt(
                Channel.SMS, recipient.id, self._sms_call(notification, phone),
            ))

        results = [r for r in await asyncio.gather(*attempts) if r is not None]

        outcome = reduce_outcome(recipient.id, results)
        if results:
            await self._record_history(recipient.id, notification, results, sender_id)
        return outcome

    @staticmethod
    async def _await_push(
        push_batch: asyncio.Task[Dict[int, DispatchResult]], idx: int,
    ) -> Optional[DispatchResult]:
        return (await asyncio.shield(push_batch)).get(idx)

    async def _record_history(
        self,
        recipient_id: str,
        notification: Notification,
        results: List[DispatchResult],
        sender_id: Optional[str],
    ) -> None:
        entry = HistoryEntry(notification=notification, results=results, sender_id=sender_id)
        try:
            await self._history.record(recipient_id, entry)
        except Exception:
            logger.exception("History append failed for %s", recipient_id)

    async def close(self) -> None:
        for provider in (self._push, self._email, self._sms):
            await provider.close()
