import asyncio
import json
import logging
import os
import re
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

import jwt
from fastapi.concurrency import run_in_threadpool

from ..config.settings import StorageConfig
from ..utils.exceptions import StorageError, ErrorKind, short_details

logger = logging.getLogger(__name__)

AREA_TEMPORARY = "temporary"
AREA_PERMANENT = "permanent"

DEFAULT_CONTENT_TYPE = "image/jpeg"
TOKEN_ALGORITHM = "HS256"
TOKEN_SCOPE = "read"
META_DIR = "_meta"

_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9_-]{1,16}$")
_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]{1,16})?$")


@dataclass
class StoredObject:
    """Объект в хранилище: логическая область, уникальное имя и URL"""
    area: str
    name: str
    url: str
    content_type: str
    size: int


@dataclass
class CleanupOutcome:
    """Результат удаления объекта в режиме best-effort"""
    target: str
    trigger: str
    succeeded: bool
    reason: Optional[str] = None

    def log(self) -> None:
        extra = {"cleanup": asdict(self)}
        if self.succeeded:
            logger.info(f"Очистка выполнена ({self.trigger}): {self.target}", extra=extra)
        else:
            logger.warning(
                f"Очистка не выполнена ({self.trigger}): {self.target}. Причина: {self.reason}",
                extra=extra
            )


def extract_extension(file_name: Optional[str]) -> str:
    """
    Расширение файла вместе с точкой ('.jpg'), пустая строка если его нет

    Расширения с недопустимыми для имени объекта символами отбрасываются.
    """
    if not file_name:
        return ""
    base_name = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    last_dot = base_name.rfind(".")
    if last_dot <= 0:
        return ""
    extension = base_name[last_dot:]
    return extension if _SAFE_EXTENSION.match(extension) else ""


def generate_unique_name(original_name: Optional[str]) -> str:
    """Случайное имя (uuid4) с сохранением исходного расширения"""
    return f"{uuid.uuid4().hex}{extract_extension(original_name)}"


def _translate_os_error(error: Exception, action: str) -> StorageError:
    if isinstance(error, FileNotFoundError):
        kind = ErrorKind.NOT_FOUND
    elif isinstance(error, TimeoutError):
        kind = ErrorKind.TIMEOUT
    elif isinstance(error, ConnectionError):
        kind = ErrorKind.CONNECTION_REFUSED
    else:
        kind = ErrorKind.UPSTREAM_FAULT
    return StorageError(kind, f"Ошибка хранилища: {action}", short_details(error))


class StorageService:
    def __init__(self, config: StorageConfig):
        """
        Файловое хранилище изображений с временной и постоянной областями

        Args:
            config: настройки хранилища (корневая папка, имена областей,
                публичный URL, подпись ссылок)
        """
        self.config = config
        self.root = Path(config.root)
        self.base_url = config.public_base_url.rstrip("/")
        self.area_dirs: Dict[str, str] = {
            AREA_TEMPORARY: config.temporary_area,
            AREA_PERMANENT: config.permanent_area,
        }
        self._areas_by_dir = {directory: area for area, directory in self.area_dirs.items()}
        for directory in self.area_dirs.values():
            (self.root / directory).mkdir(parents=True, exist_ok=True)
            (self.root / META_DIR / directory).mkdir(parents=True, exist_ok=True)

    # АДРЕСАЦИЯ

    def url_for(self, area: str, name: str) -> str:
        return f"{self.base_url}/{self.area_dirs[area]}/{name}"

    def object_ref(self, url: Optional[str]) -> Optional[Tuple[str, str]]:
        """
        Разбор URL объекта этого хранилища

        Returns:
            (логическая область, имя) или None, если URL не относится к хранилищу
        """
        if not url:
            return None
        try:
            parts = urlsplit(url)
            base = urlsplit(self.base_url)
        except ValueError:
            return None
        if (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return None
        prefix = base.path.rstrip("/") + "/"
        if not parts.path.startswith(prefix):
            return None
        segments = parts.path[len(prefix):].split("/")
        if len(segments) != 2:
            return None
        directory, name = segments
        area = self._areas_by_dir.get(directory)
        if area is None or not _SAFE_NAME.match(name):
            return None
        return area, name

    def canonical_url(self, url: str) -> str:
        """URL объекта без параметров запроса (токена); чужие URL не меняются"""
        ref = self.object_ref(url)
        if ref is None:
            return url
        return self.url_for(*ref)

    def same_object(self, first: Optional[str], second: Optional[str]) -> bool:
        """Указывают ли два URL на один объект (параметры запроса не учитываются)"""
        first_ref, second_ref = self.object_ref(first), self.object_ref(second)
        if first_ref is not None and second_ref is not None:
            return first_ref == second_ref
        return first == second

    def area_for_directory(self, directory: str) -> Optional[str]:
        return self._areas_by_dir.get(directory)

    def _object_path(self, area: str, name: str) -> Path:
        return self.root / self.area_dirs[area] / name

    def _meta_path(self, area: str, name: str) -> Path:
        return self.root / META_DIR / self.area_dirs[area] / f"{name}.json"

    # БЛОКИРУЮЩИЕ ОПЕРАЦИИ (выполняются в пуле потоков)

    def _write_object(self, area: str, name: str, data: bytes, meta: Dict[str, object]) -> None:
        path = self._object_path(area, name)
        tmp_path = path.with_name(f".{name}.part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
        with open(self._meta_path(area, name), "w", encoding="utf-8") as f:
            json.dump(meta, f, ensure_ascii=False)

    def _read_object(self, area: str, name: str) -> Tuple[bytes, Dict[str, object]]:
        with open(self._object_path(area, name), "rb") as f:
            data = f.read()
        try:
            with open(self._meta_path(area, name), "r", encoding="utf-8") as f:
                meta = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            meta = {}
        return data, meta

    def _remove_object(self, area: str, name: str) -> bool:
        existed = True
        try:
            os.remove(self._object_path(area, name))
        except FileNotFoundError:
            existed = False
        try:
            os.remove(self._meta_path(area, name))
        except FileNotFoundError:
            pass
        return existed

    # ОПЕРАЦИИ

    async def _put(self, area: str, data: bytes, original_name: str, content_type: str,
                   name: Optional[str] = None) -> StoredObject:
        name = name or generate_unique_name(original_name)
        meta = {
            "content_type": content_type,
            "original_name": original_name,
            "size": len(data),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await run_in_threadpool(self._write_object, area, name, data, meta)
        except OSError as e:
            logger.error(f"Ошибка записи объекта {name} в область {area}: {e}", exc_info=True)
            raise _translate_os_error(e, "не удалось сохранить изображение") from e
        logger.info(f"Объект {name} сохранён в область {area} ({len(data)} bytes)")
        return StoredObject(area=area, name=name, url=self.url_for(area, name),
                            content_type=content_type, size=len(data))

    async def put_temporary(self, data: bytes, original_name: str, content_type: str) -> StoredObject:
        """Сохранение неклассифицированного изображения во временную область"""
        return await self._put(AREA_TEMPORARY, data, original_name, content_type)

    async def put_permanent(self, data: bytes, original_name: str, content_type: str) -> StoredObject:
        return await self._put(AREA_PERMANENT, data, original_name, content_type)

    async def _read_with_meta(self, area: str, name: str) -> Tuple[bytes, Dict[str, object]]:
        if area not in self.area_dirs or not _SAFE_NAME.match(name):
            raise StorageError(ErrorKind.NOT_FOUND, "Изображение не найдено", f"{area}/{name}")
        try:
            return await run_in_threadpool(self._read_object, area, name)
        except OSError as e:
            raise _translate_os_error(e, "не удалось прочитать изображение") from e

    async def read(self, area: str, name: str) -> Tuple[bytes, str]:
        """
        Чтение объекта

        Returns:
            (байты, content type)

        Raises:
            StorageError: NOT_FOUND если объекта нет, иначе ошибка хранилища
        """
        data, meta = await self._read_with_meta(area, name)
        return data, str(meta.get("content_type") or DEFAULT_CONTENT_TYPE)

    async def move_temporary_to_permanent(self, temp_url: str) -> str:
        """
        Перенос изображения из временной области в постоянную

        Скачивает байты и content type, загружает под тем же именем
        в постоянную область и удаляет временный объект. При ошибке
        записи в постоянную область временный объект не удаляется.
        Ошибка удаления временного объекта только логируется.

        Args:
            temp_url: URL временного объекта

        Returns:
            URL объекта в постоянной области

        Raises:
            StorageError: при ошибке чтения или записи
        """
        ref = self.object_ref(temp_url)
        if ref is None or ref[0] != AREA_TEMPORARY:
            raise StorageError(
                ErrorKind.VALIDATION_FAILURE,
                "Не удалось определить имя файла по URL временного изображения",
                temp_url,
            )
        _, name = ref

        data, meta = await self._read_with_meta(AREA_TEMPORARY, name)
        content_type = str(meta.get("content_type") or DEFAULT_CONTENT_TYPE)
        original_name = str(meta.get("original_name") or name)

        permanent = await self._put(AREA_PERMANENT, data, original_name, content_type, name=name)
        await self.delete_quietly(temp_url, trigger="promotion")
        return permanent.url

    async def delete(self, url: str) -> bool:
        """
        Удаление объекта по URL. Отсутствующий объект считается удалённым.

        Returns:
            True при успехе, False если URL не относится к хранилищу

        Raises:
            StorageError: при ошибке файловой системы
        """
        ref = self.object_ref(url)
        if ref is None:
            logger.warning(f"URL не относится к хранилищу, удаление пропущено: {url}")
            return False
        area, name = ref
        try:
            existed = await run_in_threadpool(self._remove_object, area, name)
        except OSError as e:
            raise _translate_os_error(e, "не удалось удалить изображение") from e
        if not existed:
            logger.info(f"Объект {area}/{name} уже отсутствует")
        return True

    async def delete_quietly(self, url: str, trigger: str) -> CleanupOutcome:
        """Удаление без проброса ошибок; результат логируется и возвращается"""
        try:
            # Удаление не прерывается при отмене запроса
            deleted = await asyncio.shield(self.delete(url))
            outcome = CleanupOutcome(
                target=url,
                trigger=trigger,
                succeeded=deleted,
                reason=None if deleted else "URL не относится к хранилищу",
            )
        except StorageError as e:
            outcome = CleanupOutcome(target=url, trigger=trigger, succeeded=False,
                                     reason=e.details or e.message)
        outcome.log()
        return outcome

    async def exists(self, url: str) -> bool:
        ref = self.object_ref(url)
        if ref is None:
            return False
        area, name = ref
        return await run_in_threadpool(self._object_path(area, name).is_file)

    # ПОДПИСАННЫЕ ССЫЛКИ

    @property
    def requires_token(self) -> bool:
        return self.config.signed_urls and bool(self.config.signing_key)

    def create_read_token(self, area: str, name: str) -> str:
        payload = {
            "area": self.area_dirs[area],
            "name": name,
            "scope": TOKEN_SCOPE,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=self.config.signed_url_ttl_seconds),
        }
        return jwt.encode(payload, self.config.signing_key, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, area: str, name: str, token: Optional[str]) -> bool:
        """Проверка токена чтения для объекта"""
        if not token:
            return False
        try:
            payload = jwt.decode(token, self.config.signing_key, algorithms=[TOKEN_ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.info(f"Срок действия ссылки на {area}/{name} истек")
            return False
        except jwt.InvalidTokenError as e:
            logger.warning(f"Неверный токен для {area}/{name}: {e}")
            return False
        return (
            payload.get("area") == self.area_dirs.get(area)
            and payload.get("name") == name
            and payload.get("scope") == TOKEN_SCOPE
        )

    def public_url(self, url: str) -> str:
        """
        URL для передачи за пределы системы

        Если включены подписанные ссылки, к URL объекта хранилища
        добавляется свежий токен чтения с ограниченным сроком действия.
        Ошибка подписи не прерывает операцию: возвращается URL без подписи.
        """
        if not self.config.signed_urls:
            return url
        ref = self.object_ref(url)
        if ref is None:
            return url
        area, name = ref
        canonical = self.url_for(area, name)
        if not self.config.signing_key:
            logger.warning("Подпись ссылок включена, но ключ подписи не задан. Возвращается URL без подписи.")
            return canonical
        try:
            token = self.create_read_token(area, name)
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.warning(f"Не удалось подписать ссылку на {area}/{name}: {e}. Возвращается URL без подписи.")
            return canonical
        return f"{canonical}?token={token}"
