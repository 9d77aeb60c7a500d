import asyncio
import logging
from services.db import Base, create_db_engine
from services.security import SecurityConfig
from models import user, verification_code, login_event  # important: force-load all models

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

async def init_models(database_url: str):
    """Create every table registered on Base."""
    engine = create_db_engine(database_url)
    logger.info(f"Initializing database at {engine.url.render_as_string(hide_password=True)}")

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Created tables: {list(Base.metadata.tables.keys())}")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_models(SecurityConfig().database_url))
