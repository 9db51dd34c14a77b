import os
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Request
from sqlalchemy import text, select, delete
from sqlalchemy.engine import make_url
from sqlalchemy.exc import (SQLAlchemyError, IntegrityError, OperationalError,
                            InterfaceError, DisconnectionError, TimeoutError as PoolTimeoutError)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from .config.settings import DatabaseConfig
from .models import Base, Plant
from .schemas import PlantCreate, PlantUpdate
from .utils.exceptions import DatabaseError, ErrorKind, short_details

logger = logging.getLogger(__name__)


def create_engine_from_config(config: DatabaseConfig) -> AsyncEngine:
    """Создание асинхронного движка БД по конфигурации"""
    ensure_db_directory(config.url)
    try:
        return create_async_engine(
            config.url,
            pool_pre_ping=True,  # Проверка соединения перед использованием
            echo=config.echo
        )
    except Exception as e:
        logger.error(f"Ошибка создания движка БД: {e}")
        raise


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,  # Объекты остаются доступными после commit
        class_=AsyncSession
    )


def ensure_db_directory(database_url: str) -> None:
    """Создает директорию для SQLite-БД, если её нет"""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    db_dir = os.path.dirname(url.database)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)
        logger.info(f"Создана директория для БД: {db_dir}")


async def create_db_and_tables(engine: AsyncEngine) -> None:
    logger.info("Попытка создания таблиц базы данных...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Таблицы базы данных успешно созданы (или уже существуют).")


async def check_db_connection(db: AsyncSession) -> bool:
    """Проверяет подключение к БД"""
    try:
        await db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Ошибка подключения к БД: {e}")
        return False


# Зависимость FastAPI для получения асинхронной сессии
async def get_async_db(request: Request):
    """Сессия БД из фабрики, созданной при старте приложения"""
    session_factory: async_sessionmaker = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def utc_timestamp() -> str:
    """Текущее время в формате 2024-01-01T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def translate_db_error(error: Exception) -> DatabaseError:
    """Классификация ошибки драйвера/SQLAlchemy"""
    if isinstance(error, PoolTimeoutError):
        kind = ErrorKind.TIMEOUT
        message = "Превышено время ожидания соединения с базой данных"
    elif isinstance(error, IntegrityError):
        kind = ErrorKind.CONFLICT
        message = "Нарушено ограничение базы данных"
    elif isinstance(error, (OperationalError, InterfaceError, DisconnectionError, ConnectionError)):
        kind = ErrorKind.CONNECTION_REFUSED
        message = "Не удалось подключиться к базе данных"
    else:
        kind = ErrorKind.UPSTREAM_FAULT
        message = "Ошибка базы данных"
    return DatabaseError(kind, message, short_details(error))


async def list_plants(db: AsyncSession) -> List[Plant]:
    """
    Получает все растения, отсортированные по дате создания (новые первыми).

    Args:
        db: Асинхронная сессия базы данных

    Returns:
        Список растений

    Raises:
        DatabaseError: при ошибке базы данных
    """
    try:
        stmt = select(Plant).order_by(Plant.created_at.desc(), Plant.id)
        result = await db.execute(stmt)
        plants = list(result.scalars().all())
        logger.info(f"Получено {len(plants)} растений из БД")
        return plants
    except (SQLAlchemyError, ConnectionError) as e:
        logger.error(f"Ошибка при получении списка растений: {e}", exc_info=True)
        raise translate_db_error(e) from e


async def get_plant_by_id(db: AsyncSession, plant_id: str) -> Optional[Plant]:
    """
    Получает растение по ID.

    Returns:
        Объект растения или None, если не найдено
    """
    try:
        return await db.get(Plant, plant_id)
    except (SQLAlchemyError, ConnectionError) as e:
        logger.error(f"Ошибка при получении растения ID={plant_id}: {e}", exc_info=True)
        raise translate_db_error(e) from e


async def get_plant_by_name(db: AsyncSession, name: str) -> Optional[Plant]:
    """Первое растение с точным совпадением названия или None"""
    try:
        stmt = select(Plant).where(Plant.name == name).order_by(Plant.created_at).limit(1)
        result = await db.execute(stmt)
        return result.scalars().first()
    except (SQLAlchemyError, ConnectionError) as e:
        logger.error(f"Ошибка при поиске растения по названию '{name}': {e}", exc_info=True)
        raise translate_db_error(e) from e


async def create_plant(db: AsyncSession, plant_data: PlantCreate) -> Plant:
    """
    Создает растение. ID и временные метки назначаются до записи в БД.

    Args:
        db: Асинхронная сессия базы данных
        plant_data: Проверенные данные растения

    Returns:
        Созданный объект растения
    """
    now = utc_timestamp()
    new_plant = Plant(
        id=str(uuid.uuid4()),
        **plant_data.model_dump(),
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(new_plant)
        await db.commit()
        logger.info(f"Растение ID={new_plant.id} ('{new_plant.name}') сохранено в БД")
        return new_plant
    except (SQLAlchemyError, ConnectionError) as e:
        await db.rollback()
        logger.error(f"Ошибка при сохранении растения '{plant_data.name}': {e}", exc_info=True)
        raise translate_db_error(e) from e


async def update_plant(db: AsyncSession, plant: Plant, plant_data: PlantUpdate) -> Plant:
    """
    Заменяет изображение и уверенность растения, обновляет updated_at.

    Args:
        db: Асинхронная сессия базы данных
        plant: Существующий объект растения
        plant_data: Новые значения

    Returns:
        Обновленный объект растения
    """
    for key, value in plant_data.model_dump().items():
        setattr(plant, key, value)
    plant.updated_at = utc_timestamp()
    try:
        await db.commit()
        logger.info(f"Растение ID={plant.id} обновлено")
        return plant
    except (SQLAlchemyError, ConnectionError) as e:
        await db.rollback()
        logger.error(f"Ошибка при обновлении растения ID={plant.id}: {e}", exc_info=True)
        raise translate_db_error(e) from e


async def delete_plant(db: AsyncSession, plant_id: str) -> bool:
    """
    Удаляет растение по ID.

    Returns:
        True, если запись была удалена; False, если её не было
    """
    try:
        result = await db.execute(delete(Plant).where(Plant.id == plant_id))
        await db.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Растение ID={plant_id} удалено из БД")
        return deleted
    except (SQLAlchemyError, ConnectionError) as e:
        await db.rollback()
        logger.error(f"Ошибка при удалении растения ID={plant_id}: {e}", exc_info=True)
        raise translate_db_error(e) from e
