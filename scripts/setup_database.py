#!/usr/bin/env python3
"""
HighestVoice database setup script.
Creates the replica schema (posts, tips, empty_auctions, indexer_state).
"""

import os
import sys
import logging

from dotenv import load_dotenv

from voice_indexer.config import DEFAULT_DATABASE_URL
from voice_indexer.store import Store

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def setup_schema(database_url: str) -> bool:
    """Create every replica table that does not exist yet"""
    logger.info("Setting up HighestVoice database schema...")
    logger.info(f"Database URL: {database_url}")

    try:
        Store.from_url(database_url).init_schema()
    except Exception as e:
        logger.error(f"❌ Database setup failed: {e}")
        return False

    logger.info("✅ Schema created: posts, tips, empty_auctions, indexer_state")
    return True


def main():
    load_dotenv()
    database_url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    if setup_schema(database_url):
        logger.info("🎉 Database setup complete!")
        logger.info("Next steps:")
        logger.info("1. Set HIGHEST_VOICE_CONTRACT_* addresses in .env")
        logger.info("2. Start the indexer: voice-indexer")
        logger.info("3. Start the API: voice-api")
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
