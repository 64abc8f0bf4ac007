"""JSON persistence for the saved TVConfiguration."""

from pathlib import Path

from pydantic import ValidationError

from lgtv_automation.exceptions import ConfigurationException, ErrorCode
from lgtv_automation.logging_config import get_logger, log_with_context
from lgtv_automation.models.tv import TVConfiguration

logger = get_logger(__name__)


class JsonConfigurationStore:
    """Save, load and clear the single TV configuration."""

    def __init__(self, path: Path):
        self.path = path

    def save(self, config: TVConfiguration) -> None:
        """Replace the stored configuration.

        Raises:
            ConfigurationException: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise ConfigurationException(
                f"Failed to save configuration: {e}",
                details={"file_path": str(self.path)},
            ) from e

        log_with_context(
            logger,
            "info",
            "Configuration saved",
            tv_name=config.name,
            file_path=str(self.path),
            event_type="config_saved",
        )

    def load(self) -> TVConfiguration | None:
        """Load the stored configuration.

        Returns:
            TVConfiguration, or None if nothing has been saved

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        if not self.path.exists():
            return None

        try:
            content = self.path.read_text(encoding="utf-8")
            return TVConfiguration.model_validate_json(content)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid configuration in {self.path.name}: {e}",
                code=ErrorCode.CONFIG_ERROR,
                details={"file_path": str(self.path)},
            ) from e
        except OSError as e:
            raise ConfigurationException(
                f"Failed to read configuration: {e}",
                details={"file_path": str(self.path)},
            ) from e

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
        log_with_context(logger, "info", "Configuration cleared", file_path=str(self.path), event_type="config_cleared")
