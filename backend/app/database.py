"""
Configuration des connexions SQLite locales.

Deux bases déclaratives distinctes :
- Base         : schéma relationnel du tier `sqlite` (fichier applicatif privé)
- EmbeddedBase : magasins d'objets JSON du tier `embedded`

Chaque driver possède son propre moteur (aucun moteur global) afin de pouvoir
les instancier et les tester isolément.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

EmbeddedBase = declarative_base()


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """WAL pour la résilience aux crashs, busy_timeout pour les disques réseau lents."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=10000")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def make_engine(url: str) -> Engine:
    """
    Crée un moteur SQLAlchemy. Pour SQLite, autorise l'usage depuis les threads
    de travail (asyncio.to_thread) et applique les pragmas au branchement.
    """
    if not url.startswith("sqlite"):
        return create_engine(url)

    engine = create_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
