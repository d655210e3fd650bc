"""Configuration management for ICalSync."""
try:
    import tomllib as tomli
except ImportError:
    import tomli
import logging
import os
import tomli_w
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, fields
from datetime import datetime

from .errors import ConfigPersistError
from .models import Source

logger = logging.getLogger(__name__)


@dataclass
class AppConfig:
    """Main application configuration."""
    sources: List[Source] = field(default_factory=list)
    auto_start: bool = False
    theme: str = "Auto"
    show_holiday_feed: bool = True
    api_port: int = 8001
    cache_dir: Optional[str] = None
    log_level: str = "INFO"

    def get_source(self, source_id: str) -> Optional[Source]:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def enabled_ids(self) -> set[str]:
        return {source.id for source in self.sources if source.enabled}


def _source_from_dict(data: Dict[str, Any]) -> Source:
    known = {f.name for f in fields(Source)}
    kwargs = {key: value for key, value in data.items() if key in known}
    last_updated = kwargs.get('last_updated')
    if isinstance(last_updated, str):
        kwargs['last_updated'] = datetime.fromisoformat(last_updated)
    return Source(**kwargs)


def _source_to_dict(source: Source) -> Dict[str, Any]:
    data = {
        'id': source.id,
        'name': source.name,
        'url': source.url,
        'refresh_interval_minutes': source.refresh_interval_minutes,
        'color': source.color,
        'enabled': source.enabled,
    }
    # TOML has no null
    if source.last_updated is not None:
        data['last_updated'] = source.last_updated.isoformat()
    return data


class ConfigManager:
    """Manages configuration loading and saving."""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppConfig:
        """Load configuration from TOML file, falling back to defaults."""
        if not self.config_path.exists():
            return AppConfig()

        try:
            with open(self.config_path, 'rb') as f:
                data = tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            logger.error(f"Failed to read {self.config_path}, using defaults: {e}")
            return AppConfig()

        sources = [_source_from_dict(src) for src in data.get('sources', [])]

        return AppConfig(
            sources=sources,
            auto_start=data.get('auto_start', False),
            theme=data.get('theme', "Auto"),
            show_holiday_feed=data.get('show_holiday_feed', True),
            api_port=data.get('api_port', 8001),
            cache_dir=data.get('cache_dir'),
            log_level=data.get('log_level', "INFO"),
        )

    def save(self, config: AppConfig) -> None:
        """Save configuration to TOML file."""
        data: Dict[str, Any] = {
            'auto_start': config.auto_start,
            'theme': config.theme,
            'show_holiday_feed': config.show_holiday_feed,
            'api_port': config.api_port,
            'log_level': config.log_level,
            'sources': [_source_to_dict(src) for src in config.sources],
        }
        if config.cache_dir:
            data['cache_dir'] = config.cache_dir

        tmp_path = self.config_path.with_suffix('.toml.tmp')
        try:
            with open(tmp_path, 'wb') as f:
                tomli_w.dump(data, f)
            os.replace(tmp_path, self.config_path)
        except OSError as e:
            raise ConfigPersistError(f"Failed to save {self.config_path}: {e}") from e

    def get_sources(self) -> List[Source]:
        return self.load().sources

    def save_sources(self, sources: List[Source]) -> None:
        config = self.load()
        config.sources = list(sources)
        self.save(config)
