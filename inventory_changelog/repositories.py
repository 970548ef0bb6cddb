"""Key/value persistence for the change log and the collections it touches."""

import json
import os
import logging
import shutil
import portalocker
from typing import Any, Optional, Protocol
from datetime import datetime
from pathlib import Path
from contextlib import contextmanager
import threading
from functools import wraps

from .models import ChangeLogError

logger = logging.getLogger(__name__)


class StorageError(ChangeLogError):
    """Base exception for storage errors."""
    pass


class StorageLoadError(StorageError):
    """Exception raised when a stored value cannot be read."""
    pass


class StorageSaveError(StorageError):
    """Exception raised when a value cannot be written."""
    pass


class StorageGateway(Protocol):
    """Protocol defining the persistence interface used by the core."""

    def save(self, key: str, value: Any) -> None:
        """Persist ``value`` under ``key``."""
        ...

    def load(self, key: str, default: Any = None) -> Any:
        """Return the value stored under ``key`` or ``default``."""
        ...


def with_file_lock(func):
    """Decorator to ensure file operations are thread-safe."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._file_lock:
            return func(self, *args, **kwargs)
    return wrapper


class JsonFileStore(StorageGateway):
    """Store each key as its own JSON document inside a data directory."""

    BACKUP_SUFFIX = '.backup'
    MAX_BACKUPS = 5
    ENCODING = 'utf-8'

    def __init__(self, base_path: str, max_backups: Optional[int] = None):
        """
        Initialize the JsonFileStore.

        Args:
            base_path (str): Directory holding one ``<key>.json`` per key
            max_backups (int, optional): Backups kept per key; 0 disables them
        """
        self._file_lock = threading.Lock()
        self._base_path = Path(os.path.expanduser(base_path))
        self._max_backups = self.MAX_BACKUPS if max_backups is None else max_backups
        self._ensure_directory_exists()

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _ensure_directory_exists(self) -> None:
        """Ensure that the data directory exists."""
        try:
            self._base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Error al crear el directorio {self._base_path}: {e}")

    def path_for(self, key: str) -> Path:
        """Return the file backing ``key``."""
        if not key or os.sep in key or (os.altsep and os.altsep in key):
            raise ValueError(f"Clave de almacenamiento inválida: {key!r}")
        return self._base_path / f"{key}.json"

    def _backup_pattern(self, key: str) -> str:
        return f'{key}{self.BACKUP_SUFFIX}_*'

    def _create_backup(self, key: str) -> None:
        """Create a backup of the current file for ``key``."""
        file_path = self.path_for(key)
        if self._max_backups <= 0 or not file_path.exists():
            return
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        backup_path = self._base_path / f'{key}{self.BACKUP_SUFFIX}_{timestamp}'
        try:
            shutil.copy2(file_path, backup_path)
            self._cleanup_old_backups(key)
        except OSError as e:
            logger.error(f"Error al crear copia de seguridad: {e}")
            raise StorageSaveError(f"Error al crear copia de seguridad: {e}")

    def _cleanup_old_backups(self, key: str) -> None:
        """Remove old backup files keeping only the most recent ones."""
        backup_files = sorted(self._base_path.glob(self._backup_pattern(key)))
        while len(backup_files) > self._max_backups:
            try:
                backup_files[0].unlink()
                backup_files.pop(0)
            except OSError as e:
                logger.error(f"Error al eliminar copia de seguridad antigua: {e}")
                break

    @contextmanager
    def _open_file(self, file_path: Path, mode: str = 'r'):
        """
        Context manager for safely opening and closing a JSON file with locking.
        """
        file_obj = None
        temp_path = file_path.with_suffix('.tmp')
        try:
            if 'w' in mode:
                file_obj = open(temp_path, mode, encoding=self.ENCODING)
                portalocker.lock(file_obj, portalocker.LOCK_EX)
            else:
                file_obj = open(file_path, mode, encoding=self.ENCODING)
                portalocker.lock(file_obj, portalocker.LOCK_SH)
            yield file_obj
            if 'w' in mode and file_obj:
                file_obj.flush()
                os.fsync(file_obj.fileno())
                portalocker.unlock(file_obj)
                file_obj.close()
                file_obj = None
                os.replace(temp_path, file_path)
        except OSError as e:
            raise StorageError(f"Error al acceder al archivo {file_path}: {e}")
        finally:
            if file_obj:
                try:
                    portalocker.unlock(file_obj)
                    file_obj.close()
                except Exception as e:
                    logger.debug(f"Error al cerrar archivo: {e}")

    @with_file_lock
    def load(self, key: str, default: Any = None) -> Any:
        """Load the value stored under ``key``; ``default`` when absent."""
        file_path = self.path_for(key)
        if not file_path.exists():
            logger.debug(f"Sin datos almacenados para '{key}': {file_path}")
            return default
        try:
            with self._open_file(file_path, 'r') as file:
                return json.load(file)
        except json.JSONDecodeError as e:
            error_msg = f"Error al analizar JSON en {file_path}: {e}"
            logger.error(error_msg)
            self._handle_corrupted_file(key)
            raise StorageLoadError(error_msg)
        except Exception as e:
            error_msg = f"Error inesperado al cargar '{key}': {e}"
            logger.error(error_msg)
            raise StorageLoadError(error_msg)

    @with_file_lock
    def save(self, key: str, value: Any) -> None:
        """Save ``value`` under ``key``, replacing the previous document."""
        file_path = self.path_for(key)
        try:
            self._create_backup(key)
            with self._open_file(file_path, 'w') as file:
                json.dump(value, file, indent=2, ensure_ascii=False)
        except Exception as e:
            error_msg = f"Error al guardar '{key}': {e}"
            logger.error(error_msg)
            raise StorageSaveError(error_msg)

    def _handle_corrupted_file(self, key: str) -> None:
        """Handle a corrupted file by attempting to restore from backup."""
        latest_backup = self._find_latest_backup(key)
        if latest_backup:
            try:
                shutil.copy2(latest_backup, self.path_for(key))
                logger.info(f"Restaurado desde copia de seguridad: {latest_backup}")
            except OSError as e:
                logger.error(f"Error al restaurar desde copia de seguridad: {e}")

    def _find_latest_backup(self, key: str) -> Optional[Path]:
        """Find the most recent backup file for ``key``."""
        backup_files = sorted(self._base_path.glob(self._backup_pattern(key)), reverse=True)
        return backup_files[0] if backup_files else None
