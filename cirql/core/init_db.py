from loguru import logger
from cirql.core.db import engine, Base

# Import all models so SQLAlchemy registers them
from cirql.models.place import Place, PlaceMember
from cirql.models.profile import Profile

def init_db(bind=None):
    logger.info("Creating database tables")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
