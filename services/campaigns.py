"""
Campaign Reply Poller - grants to people who reply to a campaign tweet

Every active Tempo campaign has a source tweet. Each new reply from a user
with a MoniPay profile earns one grant of campaign.grant_amount, paid
through MoniBotRouter, until max_participants is reached.

Capacity is a soft limit: checked before each grant against the counter
this worker keeps updated in memory. Two workers polling the same campaign
can overshoot by a few grants.
"""

import logging

from core.chain import TransferError
from core.constitution import TEMPO_CHAIN, TEMPO_RULES, SkipReason, TxKind, TxStatus
from core.models import Campaign, PollOutcome, SocialEvent, StreamCursor, TransactionRecord

logger = logging.getLogger("monibot.campaigns")


class CampaignReplyPoller:

    def __init__(self, reader, datastore, resolver, ledger, executor,
                 reserved_handles: tuple[str, ...] = TEMPO_RULES.RESERVED_HANDLES):
        self._reader = reader
        self._store = datastore
        self._resolver = resolver
        self._ledger = ledger
        self._executor = executor
        self._reserved = {h.lower() for h in reserved_handles}

    @staticmethod
    def stream_for(campaign: Campaign) -> str:
        return f"campaign:{campaign.campaign_id}"

    @staticmethod
    def query_for(campaign: Campaign) -> str:
        return f"conversation_id:{campaign.source_event_id} is:reply -is:retweet"

    async def poll(self, cursors: dict[str, str]) -> PollOutcome:
        outcome = PollOutcome(cursors=dict(cursors))

        logger.info("[Tempo] Checking active campaigns...")
        campaigns = await self._store.active_campaigns(TEMPO_CHAIN["name"])
        if not campaigns:
            logger.info("   No active Tempo campaigns.")
            return outcome
        logger.info(f"   Found {len(campaigns)} active Tempo campaign(s).")

        if self._reader is None:
            logger.info("   Twitter not available, skipping campaign replies")
            return outcome

        for campaign in campaigns:
            stream = self.stream_for(campaign)
            try:
                processed, errors, cursor = await self.poll_campaign(campaign, StreamCursor.load(cursors, stream))
            except Exception as e:
                outcome.errors += 1
                logger.error(f"Campaign {campaign.campaign_id} error: {type(e).__name__}: {e}")
                continue
            outcome.processed += processed
            outcome.errors += errors
            cursor.store(outcome.cursors, stream)

        return outcome

    async def poll_campaign(self, campaign: Campaign, cursor: StreamCursor) -> tuple[int, int, StreamCursor]:
        """Returns (grants completed, event errors, next cursor)."""
        if campaign.at_capacity:
            logger.info(f"Campaign {campaign.campaign_id} at capacity "
                        f"({campaign.current_participants}/{campaign.max_participants})")
            return 0, 0, cursor

        page = await self._reader.search(self.query_for(campaign), since_id=cursor.since_id,
                                         until_id=cursor.until_id, max_results=TEMPO_RULES.REPLY_PAGE_SIZE)
        processed = 0
        errors = 0
        handled_through = None
        halted = False

        for reply in page.events:
            if campaign.at_capacity:
                logger.info(f"Campaign {campaign.campaign_id} reached capacity, stopping for this cycle")
                halted = True
                break
            try:
                if await self.process_reply(campaign, reply):
                    processed += 1
            except Exception as e:
                errors += 1
                halted = True
                logger.error(f"Reply {reply.id} to campaign {campaign.campaign_id} failed: {type(e).__name__}: {e}")
                continue
            if not halted:
                handled_through = reply.id

        return processed, errors, cursor.advance(page, handled_through, halted)

    async def process_reply(self, campaign: Campaign, reply: SocialEvent) -> bool:
        """One reply -> at most one grant. True when a grant completed."""
        handle = reply.author_handle
        if reply.is_repost or handle.lower() in self._reserved:
            return False
        if reply.conversation_id and reply.conversation_id != campaign.source_event_id:
            logger.debug(f"Reply {reply.id} belongs to conversation {reply.conversation_id}, ignoring")
            return False

        if await self._ledger.already_recorded(reply.id):
            return False

        profile = await self._resolver.resolve_handle(handle)
        if profile is None:
            logger.info(f"   No profile for @{handle}, skipping grant")
            await self._ledger.record_skip(
                reply.id,
                SkipReason.NO_PROFILE,
                TxKind.GRANT,
                sender_id=campaign.campaign_id,
                receiver_id=campaign.campaign_id,
                amount=campaign.grant_amount,
                error_reason=f"No profile for @{handle}",
                campaign_id=campaign.campaign_id,
            )
            return False

        if not await self._ledger.claim(reply.id):
            return False

        try:
            result = await self._executor.grant(profile.pay_address, campaign.grant_amount, campaign.campaign_id)
        except TransferError as e:
            logger.error(f"Grant failed for @{handle}: {e}")
            await self._ledger.record_failure(
                reply.id,
                SkipReason.TRANSFER_FAILED,
                TxKind.GRANT,
                sender_id=campaign.campaign_id,
                receiver_id=profile.profile_id,
                amount=campaign.grant_amount,
                error_reason=str(e),
                campaign_id=campaign.campaign_id,
                recipient_pay_tag=profile.pay_tag,
            )
            return False

        record = TransactionRecord(
            source_event_id=reply.id,
            tx_hash=result.tx_hash,
            sender_id=campaign.campaign_id,
            receiver_id=profile.profile_id,
            amount=campaign.grant_amount,
            fee=result.fee,
            kind=TxKind.GRANT,
            status=TxStatus.COMPLETED,
            campaign_id=campaign.campaign_id,
            recipient_pay_tag=profile.pay_tag,
        )
        try:
            await self._ledger.record_grant(record, campaign)
        except Exception:
            logger.critical(f"Grant {result.tx_hash} confirmed but ledger write failed for reply {reply.id}")
            raise

        logger.info(f"Grant to @{handle} ({profile.pay_tag}): {self._executor.get_explorer_url(result.tx_hash)}")
        return True
