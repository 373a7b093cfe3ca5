from sqlmodel import Session, SQLModel, create_engine

from wikishelf.core.config import settings
import wikishelf.models  # noqa: F401  # ensure model metadata is registered


engine = create_engine(settings.database_url, echo=settings.database_echo, pool_pre_ping=True)


def init_db() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
