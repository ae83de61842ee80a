"""
P2P Command Poller - "@monibot send $5 to @alice on tempo"

One cycle:
1. search new mentions since the watermark
2. drop posts without a Tempo keyword; reposts never reach us (-is:retweet)
3. skip tweets the ledger already knows
4. quote-reposts must carry an imperative command, else skipped
5. parse -> resolve sender and recipients -> balance check -> claim
6. per recipient: transfer, record (unresolved tags get a failed leg)

Per-event failures never abort the cycle. Unexpected errors (datastore or
RPC reads down) leave the event unrecorded and hold the watermark below it,
so it is fetched again next cycle.
"""

import logging
from decimal import Decimal
from typing import Optional

from core.chain import PartialTransferError, TransferError
from core.command_parser import TransferIntent, is_direct_command, is_network_related, parse_command
from core.constitution import TEMPO_RULES, SkipReason, TxKind, TxStatus, ZERO_PROFILE_ID
from core.models import PollOutcome, Profile, SocialEvent, StreamCursor

logger = logging.getLogger("monibot.p2p")


class P2PCommandPoller:

    STREAM = "p2p"

    def __init__(
        self,
        reader,
        resolver,
        ledger,
        executor,
        bot_handle: str = "monibot",
        bot_profile_id: str = ZERO_PROFILE_ID,
        reserved_handles: tuple[str, ...] = TEMPO_RULES.RESERVED_HANDLES,
        max_amount: Decimal = Decimal(TEMPO_RULES.MAX_COMMAND_AMOUNT),
    ):
        self._reader = reader
        self._resolver = resolver
        self._ledger = ledger
        self._executor = executor
        self._bot_handle = bot_handle
        self._bot_profile_id = bot_profile_id
        self._reserved = reserved_handles
        self._max_amount = max_amount

    @property
    def query(self) -> str:
        return f"@{self._bot_handle} (send OR pay) (tempo OR alphausd) -is:retweet"

    async def poll(self, cursors: dict[str, str]) -> PollOutcome:
        outcome = PollOutcome(cursors=dict(cursors))
        if self._reader is None:
            logger.info("Twitter not available, skipping P2P poll")
            return outcome

        cursor = StreamCursor.load(cursors, self.STREAM)
        logger.info("[Tempo] Polling for P2P commands...")
        page = await self._reader.search(self.query, since_id=cursor.since_id, until_id=cursor.until_id,
                                         max_results=TEMPO_RULES.SEARCH_PAGE_SIZE)

        if not page.events:
            logger.info("   No new Tempo P2P commands found.")
        else:
            logger.info(f"Found {len(page.events)} potential Tempo commands.")

        handled_through = None
        blocked = False
        for event in page.events:
            try:
                # Must be a Tempo command, never a repost
                if not event.is_repost and is_network_related(event.text):
                    outcome.processed += await self.process_event(event)
            except Exception as e:
                outcome.errors += 1
                blocked = True
                logger.error(f"Error processing tweet {event.id}: {type(e).__name__}: {e}")
                continue
            if not blocked:
                handled_through = event.id

        cursor.advance(page, handled_through, blocked).store(outcome.cursors, self.STREAM)
        return outcome

    # ============================================================
    # SINGLE EVENT
    # ============================================================

    async def process_event(self, event: SocialEvent) -> int:
        """Handle one tweet end to end. Returns the number of completed transfers."""
        if await self._ledger.already_recorded(event.id):
            return 0

        author = event.author_handle

        if event.is_quote and not is_direct_command(event.text):
            logger.info(f"   Quote tweet {event.id} from @{author} is not a command. Skipping.")
            await self._skip(event, SkipReason.QUOTE_NOT_COMMAND)
            return 0

        intent = parse_command(event.text, reserved_handles=(*self._reserved, author.lower()), max_amount=self._max_amount)
        if intent is None:
            logger.info(f"   Could not parse command from @{author}: \"{event.text[:60]}\"")
            await self._skip(event, SkipReason.PARSE_FAILED)
            return 0

        logger.info(f"[Tempo] P2P from @{author}: ${intent.amount} to {', '.join(intent.recipient_tags)}"
                    f"{' each' if intent.is_split_each else ''}")

        sender = await self._resolver.resolve_handle(author)
        if sender is None:
            logger.info(f"   Sender @{author} not found")
            await self._skip(event, SkipReason.SENDER_NOT_FOUND, recipient_tag=intent.recipient_tags[0])
            return 0

        # Every lookup precedes the claim; a claimed event is never retried
        recipients = {tag: await self._resolver.resolve(tag) for tag in intent.recipient_tags}

        if not await self._has_funds(event, sender, intent):
            return 0

        if not await self._ledger.claim(event.id):
            return 0

        completed = 0
        for index, tag in enumerate(intent.recipient_tags):
            if await self._execute_leg(event, sender, intent, tag, recipients[tag], index):
                completed += 1

        logger.info(f"   P2P result: {completed}/{len(intent.recipient_tags)} successful")
        return completed

    async def _has_funds(self, event: SocialEvent, sender: Profile, intent: TransferIntent) -> bool:
        balance = await self._executor.balance_of(sender.pay_address)
        total = intent.total_required
        if balance >= total:
            return True

        logger.info(f"   Insufficient balance: {balance} αUSD < {total} needed")
        await self._ledger.record_failure(
            event.id,
            SkipReason.INSUFFICIENT_BALANCE,
            TxKind.P2P_COMMAND,
            sender_id=sender.profile_id,
            receiver_id=sender.profile_id,
            amount=total,
            error_reason=f"Balance {balance} < {total} αUSD",
            payer_pay_tag=sender.pay_tag,
            recipient_pay_tag=",".join(intent.recipient_tags),
        )
        return False

    async def _execute_leg(self, event: SocialEvent, sender: Profile, intent: TransferIntent,
                           tag: str, recipient: Optional[Profile], index: int) -> bool:
        amount = intent.amount_per_recipient
        if recipient is None:
            logger.info(f"   Recipient @{tag} not found")
            await self._ledger.record_failure(
                event.id,
                SkipReason.RECIPIENT_NOT_FOUND,
                TxKind.P2P_COMMAND,
                sender_id=sender.profile_id,
                receiver_id=sender.profile_id,
                amount=amount,
                error_reason=f"No profile for @{tag}",
                leg=tag,
                payer_pay_tag=sender.pay_tag,
                recipient_pay_tag=tag,
            )
            return False

        try:
            result = await self._executor.transfer(
                recipient.pay_address,
                amount,
                memo=f"P2P: @{event.author_handle} -> @{tag}",
                sender_address=sender.pay_address,
                source_event_id=event.id,
                leg_index=index,
            )
        except PartialTransferError as e:
            await self._ledger.record_failure(
                event.id,
                SkipReason.FEE_LEG_FAILED,
                TxKind.P2P_COMMAND,
                sender_id=sender.profile_id,
                receiver_id=recipient.profile_id,
                amount=e.amount,
                fee=e.fee,
                error_reason=str(e),
                leg=tag,
                tx_hash=e.tx_hash,
                status=TxStatus.PARTIALLY_COMPLETED,
                payer_pay_tag=sender.pay_tag,
                recipient_pay_tag=recipient.pay_tag,
            )
            return False
        except TransferError as e:
            logger.error(f"   Transfer to @{tag} failed: {e}")
            await self._ledger.record_failure(
                event.id,
                SkipReason.TRANSFER_FAILED,
                TxKind.P2P_COMMAND,
                sender_id=sender.profile_id,
                receiver_id=recipient.profile_id,
                amount=amount,
                error_reason=str(e),
                leg=tag,
                payer_pay_tag=sender.pay_tag,
                recipient_pay_tag=recipient.pay_tag,
            )
            return False

        try:
            await self._ledger.record_completed(
                event.id,
                result.tx_hash,
                TxKind.P2P_COMMAND,
                sender_id=sender.profile_id,
                receiver_id=recipient.profile_id,
                amount=result.amount,
                fee=result.fee,
                leg=tag,
                payer_pay_tag=sender.pay_tag,
                recipient_pay_tag=recipient.pay_tag,
            )
        except Exception:
            logger.critical(f"   Transfer {result.tx_hash} confirmed but ledger write failed for tweet {event.id} leg @{tag}")
            raise

        route = "router" if result.routed else "two-leg"
        logger.info(f"   Sent {result.net_amount} αUSD to @{tag} ({route}): {self._executor.get_explorer_url(result.tx_hash)}")
        return True

    async def _skip(self, event: SocialEvent, reason: SkipReason, recipient_tag: Optional[str] = None) -> None:
        await self._ledger.record_skip(
            event.id,
            reason,
            TxKind.P2P_COMMAND,
            sender_id=self._bot_profile_id,
            receiver_id=self._bot_profile_id,
            payer_pay_tag=event.author_handle,
            recipient_pay_tag=recipient_tag,
        )
