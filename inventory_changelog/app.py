"""
Change Log Application
----------------------
Builds the change log service from configuration: storage, inventory,
auxiliary stores and logging.
"""

import json
import logging
import logging.handlers
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

from .inventory import InventoryService
from .models import ChangeLogError
from .prompts import ConfirmationPrompt
from .repositories import JsonFileStore
from .services import ChangeLogService
from .stores import CatalogMap, PriceHistoryStore

PACKAGE_LOGGER = "inventory_changelog"
ENV_VAR = "INVENTORY_CHANGELOG_ENV"


class ConfigurationError(ChangeLogError):
    """Raised when there's an error in configuration."""
    pass


class ChangeLogApp:
    """Owns configuration and the wiring of the change log components."""

    # Default configuration
    DEFAULT_CONFIG = {
        "data_dir": "~/.inventory_changelog/data",
        "log_dir": "~/.inventory_changelog/logs",
        "log_level": "INFO",
        "max_log_size": 5_242_880,  # 5MB
        "backup_count": 3,
        "storage": {
            "max_backups": 5
        },
        "keys": {
            "change_log": "changeLog",
            "inventory": "metalInventory",
            "catalog_map": "catalogMap",
            "price_history": "itemPriceHistory"
        }
    }

    def __init__(self):
        self.config: Dict[str, Any] = {}
        self.logger: Optional[logging.Logger] = None
        self.store: Optional[JsonFileStore] = None
        self.service: Optional[ChangeLogService] = None

    def initialize(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the application with configuration.

        Args:
            config_path: Optional path to configuration file

        Raises:
            ConfigurationError: If configuration is invalid
        """
        try:
            self.config = self._load_configuration(config_path)
            self._setup_logging()
            self._setup_directories()
            self.logger.info("Application initialization started")
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to initialize application: {e}")

    def _load_configuration(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load application configuration.

        Args:
            config_path: Optional path to configuration file

        Returns:
            Dict containing configuration
        """
        config = deepcopy(self.DEFAULT_CONFIG)

        if config_path:
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    user_config = json.load(f)
                if not isinstance(user_config, dict):
                    raise ValueError("the configuration root must be an object")
                for key, value in user_config.items():
                    if key in ("storage", "keys") and isinstance(value, dict):
                        config[key].update(value)
                    else:
                        config[key] = value
            except Exception as e:
                raise ConfigurationError(
                    f"Failed to load configuration from {config_path}: {e}")

        if not isinstance(getattr(logging, str(config['log_level']).upper(), None), int):
            raise ConfigurationError(f"Invalid log level: {config['log_level']}")

        # Expand paths
        config['data_dir'] = os.path.expanduser(config['data_dir'])
        config['log_dir'] = os.path.expanduser(config['log_dir'])

        return config

    def _setup_logging(self) -> None:
        """Configure application logging."""
        self.logger = logging.getLogger(PACKAGE_LOGGER)
        self.logger.setLevel(getattr(logging, str(self.config['log_level']).upper()))

        # Create log directory
        log_dir = Path(self.config['log_dir'])
        log_dir.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        log_file = log_dir / 'inventory_changelog.log'
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.config['max_log_size'],
            backupCount=self.config['backup_count'],
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        self.logger.addHandler(file_handler)

        # Console handler for development
        if self._is_development_mode():
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(
                '%(levelname)s: %(message)s'
            ))
            self.logger.addHandler(console_handler)

    def _setup_directories(self) -> None:
        """Create necessary application directories."""
        for path in (self.config['data_dir'], self.config['log_dir']):
            Path(path).mkdir(parents=True, exist_ok=True)

    def _is_development_mode(self) -> bool:
        """Check if application is running in development mode."""
        return os.environ.get(ENV_VAR) == 'development'

    def _create_store(self) -> JsonFileStore:
        """Create the JSON file store."""
        storage_cfg = self.config.get('storage', {})
        return JsonFileStore(
            self.config['data_dir'],
            max_backups=storage_cfg.get('max_backups'),
        )

    def build_service(self, prompt: Optional[ConfirmationPrompt] = None) -> ChangeLogService:
        """Create the service with every collaborator loaded from storage."""
        if not self.config:
            raise ConfigurationError("Application not initialized")
        keys = self.config['keys']
        self.store = self._create_store()

        inventory = InventoryService(self.store, key=keys['inventory'])
        inventory.load()
        catalog_map = CatalogMap(self.store, key=keys['catalog_map'])
        catalog_map.load()
        price_history = PriceHistoryStore(self.store, key=keys['price_history'])
        price_history.load()

        self.service = ChangeLogService(
            self.store,
            inventory,
            catalog_map=catalog_map,
            price_history=price_history,
            prompt=prompt,
            key=keys['change_log'],
        )
        self.service.load()
        self.logger.info(
            f"Registro de cambios cargado: {len(self.service)} entradas, "
            f"{len(inventory)} artículos")
        return self.service

    def shutdown(self) -> None:
        """Detach and close the handlers installed by ``initialize``."""
        if not self.logger:
            return
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
