import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from src.core.entities.participant import Participant
from src.core.entities.refresh import ParticipantOutcome, ReconciliationStage
from src.core.entities.snapshot import ValuationSource
from src.core.errors import LeaderboardWriteError, ParticipantProcessingError
from src.core.interfaces.persistence import IPersistenceGateway
from src.core.use_cases.chain_reader import ChainReader
from src.core.use_cases.retry import RetryExecutor
from src.core.use_cases.standings import TOURNAMENT_START, build_snapshot, leaderboard_entry_for
from src.core.use_cases.valuation_provider import ValuationProvider, estimate_portfolio_from_deposits

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationEngine:
    """
    Per-participant refresh: deposits -> deposit sum -> valuation -> flags ->
    snapshot + leaderboard row.

    A failure at any stage is contained here and reported as a failed
    ParticipantOutcome. Deposits written before the failure stay (ingestion is
    idempotent); the snapshot and leaderboard row are only written when every
    stage succeeded, and they are committed together.
    """

    def __init__(
        self,
        repo: IPersistenceGateway,
        chain_reader: ChainReader,
        valuation: ValuationProvider,
        retry: Optional[RetryExecutor] = None,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        start_block: int = 0,
        tournament_start: datetime = TOURNAMENT_START,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repo = repo
        self.chain_reader = chain_reader
        self.valuation = valuation
        self.retry = retry or RetryExecutor()
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.start_block = start_block
        self.tournament_start = tournament_start
        self.clock = clock

    async def process(self, participant: Participant) -> ParticipantOutcome:
        stage = ReconciliationStage.FETCH_DEPOSITS
        deposits_found = 0
        context = {"participant_id": participant.id, "wallet": participant.wallet}
        logger.info(f"Processing {participant.nickname} ({participant.wallet})", extra=context)

        try:
            transfers = await self.retry.execute(
                lambda: self.chain_reader.fetch_deposits_with_timestamps(
                    participant.wallet, self.start_block
                ),
                max_attempts=self.max_attempts,
                initial_delay=self.initial_delay,
            )
            deposits = [
                self.chain_reader.transfer_to_deposit(t, participant.id, participant.wallet)
                for t in transfers
            ]
            deposits_found = len(deposits)

            stage = ReconciliationStage.PERSIST_DEPOSITS
            inserted = await self.repo.insert_deposits(deposits) if deposits else 0
            logger.info(
                f"Found {deposits_found} deposits ({inserted} new)",
                extra={**context, "deposits_found": deposits_found, "deposits_new": inserted},
            )

            stage = ReconciliationStage.COMPUTE_DEPOSIT_SUM
            deposit_sum = await self.repo.sum_deposits(participant.id)

            stage = ReconciliationStage.FETCH_VALUATION
            portfolio_value, source = await self._fetch_valuation(participant, deposit_sum)
            first_trade_date = await self.valuation.get_first_trade_date(participant.wallet)

            stage = ReconciliationStage.COMPUTE_FLAGS
            snapshot = build_snapshot(
                participant_id=participant.id,
                portfolio_value=portfolio_value,
                deposit_sum=deposit_sum,
                first_trade_date=first_trade_date,
                valuation_source=source,
                snapshot_time=self.clock(),
                tournament_start=self.tournament_start,
            )

            stage = ReconciliationStage.WRITE_SNAPSHOT
            entry = leaderboard_entry_for(participant, snapshot)

            # snapshot insert and leaderboard upsert commit in one transaction
            try:
                await self.repo.commit_standing(snapshot, entry)
            except LeaderboardWriteError:
                stage = ReconciliationStage.UPSERT_LEADERBOARD
                raise

        except Exception as e:
            failure = ParticipantProcessingError(participant.id, stage.value, e)
            logger.error(
                f"Error processing participant {participant.nickname}: {failure}",
                exc_info=True,
                extra={**context, "stage": stage.value},
            )
            return ParticipantOutcome(
                participant_id=participant.id,
                stage=ReconciliationStage.FAILED,
                failed_stage=stage,
                deposits_found=deposits_found,
                error=str(e),
            )

        logger.info(
            f"Updated leaderboard: deposits={snapshot.deposit_sum} value={snapshot.portfolio_value} "
            f"pnl={snapshot.pnl} source={snapshot.valuation_source.value}",
            extra={**context, "stage": ReconciliationStage.DONE.value},
        )
        return ParticipantOutcome(
            participant_id=participant.id,
            stage=ReconciliationStage.DONE,
            deposits_found=deposits_found,
            snapshot=snapshot,
        )

    async def _fetch_valuation(self, participant: Participant, deposit_sum: Decimal) -> tuple[Decimal, ValuationSource]:
        try:
            portfolio = await self.valuation.fetch_portfolio_value(participant.wallet)
            return portfolio.total_value, ValuationSource.API
        except Exception as e:
            logger.warning(
                f"Could not fetch portfolio for {participant.wallet}, using fallback: {e}",
                extra={"participant_id": participant.id, "stage": ReconciliationStage.FETCH_VALUATION.value},
            )
            return estimate_portfolio_from_deposits(deposit_sum), ValuationSource.FALLBACK
