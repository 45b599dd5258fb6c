import asyncio
import logging
from datetime import datetime, timezone
from decimal import Context, Decimal
from typing import Awaitable, Callable, Optional

from src.core.entities.deposit import Deposit, TransferEvent
from src.core.entities.participant import WALLET_PATTERN
from src.core.errors import ValidationError
from src.core.interfaces.datasource import BlockTag, ILedger

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
USDC_DECIMALS = 6
BLOCK_LOOKUP_PAUSE = 0.1  # seconds between block timestamp lookups

# uint256 has at most 78 decimal digits, so scaling never rounds
_EXACT = Context(prec=78)


def zero_pad_address(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte log topic."""
    return "0x" + address.lower()[2:].rjust(64, "0")


def topic_to_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


class ChainReader:
    """
    Reads USDC Transfer events addressed to participant wallets.
    """

    def __init__(
        self,
        ledger: ILedger,
        token_address: str,
        decimals: int = USDC_DECIMALS,
        block_lookup_pause: float = BLOCK_LOOKUP_PAUSE,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if not WALLET_PATTERN.match(token_address or ""):
            raise ValidationError(f"Invalid token contract address: {token_address}")
        self.ledger = ledger
        self.token_address = token_address.lower()
        self.decimals = decimals
        self.block_lookup_pause = block_lookup_pause
        self._sleep = sleep or asyncio.sleep

    async def fetch_deposits(
        self,
        wallet: str,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
    ) -> list[TransferEvent]:
        """
        Fetch Transfer events of the configured token whose recipient is `wallet`.
        Timestamps are left unset; see fetch_deposits_with_timestamps.
        """
        if not WALLET_PATTERN.match(wallet or ""):
            raise ValidationError(f"Invalid wallet address: {wallet}")

        log_filter = {
            "address": self.token_address,
            "topics": [TRANSFER_TOPIC, None, zero_pad_address(wallet)],
            "fromBlock": from_block,
            "toBlock": to_block,
        }

        logger.info(f"Fetching deposits for {wallet} from block {from_block} to {to_block}")
        logs = await self.ledger.get_logs(log_filter)
        logger.info(f"Found {len(logs)} transfer events for {wallet}")

        transfers = []
        for log in logs:
            transfer = self._parse_transfer_log(log)
            if transfer is not None:
                transfers.append(transfer)
        return transfers

    def _parse_transfer_log(self, log: dict) -> Optional[TransferEvent]:
        try:
            topics = log["topics"]
            if len(topics) < 3 or topics[0].lower() != TRANSFER_TOPIC:
                raise ValueError(f"unexpected topics {topics}")
            return TransferEvent(
                tx_hash=log["transactionHash"],
                block_number=int(log["blockNumber"]),
                sender=topic_to_address(topics[1]),
                recipient=topic_to_address(topics[2]),
                raw_amount=int(log["data"], 16),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed transfer log: {e}")
            return None

    def convert_amount(self, raw: int) -> Decimal:
        """Base units to token amount, exact (1_234_560_000 -> 1234.56)."""
        return Decimal(raw).scaleb(-self.decimals, _EXACT)

    async def fetch_block_timestamp(self, block_number: int) -> int:
        block = await self.ledger.get_block(block_number)
        if not block or block.get("timestamp") is None:
            raise ValueError(f"Block {block_number} has no timestamp")
        return int(block["timestamp"])

    async def fetch_deposits_with_timestamps(
        self,
        wallet: str,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
    ) -> list[TransferEvent]:
        transfers = await self.fetch_deposits(wallet, from_block, to_block)

        # one lookup per distinct block, sequential with a courtesy pause
        unique_blocks = list(dict.fromkeys(t.block_number for t in transfers))
        logger.info(f"Fetching timestamps for {len(unique_blocks)} unique blocks")

        block_timestamps: dict[int, int] = {}
        for i, block_number in enumerate(unique_blocks):
            if i > 0:
                await self._sleep(self.block_lookup_pause)
            block_timestamps[block_number] = await self.fetch_block_timestamp(block_number)

        return [
            t.model_copy(update={"timestamp": block_timestamps[t.block_number]})
            for t in transfers
        ]

    def transfer_to_deposit(self, transfer: TransferEvent, participant_id: int, wallet: str) -> Deposit:
        if transfer.timestamp is None:
            raise ValueError(f"Transfer {transfer.tx_hash} has no resolved timestamp")
        return Deposit(
            participant_id=participant_id,
            wallet=wallet.lower(),
            tx_hash=transfer.tx_hash,
            block_number=transfer.block_number,
            amount=self.convert_amount(transfer.raw_amount),
            timestamp=datetime.fromtimestamp(transfer.timestamp, tz=timezone.utc),
        )

    async def get_current_block_number(self) -> int:
        return await self.ledger.get_block_number()
