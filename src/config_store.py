import logging
import os
from typing import Optional

from bill_models import Configuration
from config_loader import get_data_dir
from tracker_errors import PersistenceError
from tracking_store import read_json, write_json_atomic

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "folder_config.json"


class ConfigurationStore:
    """Persists the whole Configuration as one JSON document."""

    def __init__(self, path: str = None):
        self.path = path or os.path.join(get_data_dir(), CONFIG_FILE_NAME)

    def load(self) -> Optional[Configuration]:
        data = read_json(self.path, "load_configuration")
        if not data:
            return None
        try:
            return Configuration.from_dict(data)
        except (TypeError, ValueError) as e:
            raise PersistenceError(self.path, "load_configuration", str(e))

    def save(self, config: Configuration):
        write_json_atomic(self.path, config.to_dict(), "save_configuration")
        logger.debug("Saved configuration to %s", self.path)
