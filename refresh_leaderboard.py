"""
Manual leaderboard refresh.

Usage:
    python refresh_leaderboard.py

Runs one refresh against the configured database and exits 0 on completion,
1 if configuration is missing or the run could not proceed. Individual
participant failures are logged and do not change the exit code.
"""
import sys
import os
import asyncio
import logging

# Add project root to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

from src.config import Config
from src.container import build_services

logger = logging.getLogger("refresh_leaderboard")


async def main() -> int:
    print("=" * 55)
    print("  Tournament Leaderboard - Manual Refresh")
    print("=" * 55)

    load_dotenv()
    config = Config.from_env()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    missing = config.missing_required()
    if missing:
        print("❌ Missing required environment variables:")
        for key in missing:
            print(f"   - {key}")
        return 1

    services = build_services(config)
    try:
        summary = await services.refresh.run_refresh("manual")
        print(
            f"\n✅ Refresh completed: {len(summary.succeeded)} succeeded, "
            f"{len(summary.failed)} failed, {len(summary.fallback_valuations)} used fallback valuation"
        )
        return 0
    except Exception as e:
        logger.error(f"Refresh failed: {e}", exc_info=True)
        print(f"\n❌ Refresh failed: {e}")
        return 1
    finally:
        await services.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
