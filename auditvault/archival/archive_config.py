"""
Configuration management for the archival system.

This module handles loading archival settings from YAML, writing the defaults
on first run, and building the typed settings objects the engines use.
"""

import copy
import logging
from pathlib import Path
from typing import Dict, Any, List

import yaml

from .archive_models import ArchiveConfig, RetentionPolicy

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    'global': {
        'enabled': True,
    },
    'archive': {
        'compression_algorithm': 'gzip',
        'compression_level': 6,
        'format': 'json',
        'verify_integrity': True,
        'batch_size': 1000,
    },
    'deletion': {
        'verify_deletion': True,
    },
    'retrieval': {
        'default_limit': None,
    },
    'logging': {
        'logs_dir': 'logs/archival',
        'log_operations': True,
    },
    'policies': [
        {
            'policy_name': 'standard',
            'data_classification': 'INTERNAL',
            'retention_days': 2555,
            'archive_after_days': 365,
            'delete_after_days': None,
            'description': 'Internal audit events, kept for seven years',
        },
        {
            'policy_name': 'confidential',
            'data_classification': 'CONFIDENTIAL',
            'retention_days': 2555,
            'archive_after_days': 730,
            'delete_after_days': 2555,
            'description': 'Confidential audit events, deleted after seven years',
        },
        {
            'policy_name': 'minimal',
            'data_classification': 'PUBLIC',
            'retention_days': 365,
            'archive_after_days': 90,
            'delete_after_days': 365,
            'description': 'Public audit events, deleted after one year',
        },
    ],
}


class ArchivalConfigManager:
    """Manages archival system configuration."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            if self.config_path.exists():
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            else:
                logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
                config_data = self._get_default_config()
                self._save_config(config_data)

            return self._merge_with_defaults(config_data)

        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}")
            return self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_CONFIG)

    def _merge_with_defaults(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Fill sections and keys missing from the file with defaults."""
        merged = self._get_default_config()
        if not isinstance(config_data, dict):
            logger.error(f"Config at {self.config_path} is not a mapping. Using defaults.")
            return merged

        for section, values in config_data.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, sort_keys=False)
            logger.info(f"Default config saved to {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_archive_config(self) -> ArchiveConfig:
        """Build the orchestrator settings from the archive section."""
        archive = self.config['archive']
        return ArchiveConfig(
            compression_algorithm=str(archive.get('compression_algorithm', 'gzip')),
            compression_level=int(archive.get('compression_level', 6)),
            format=str(archive.get('format', 'json')),
            verify_integrity=bool(archive.get('verify_integrity', True)),
            batch_size=int(archive.get('batch_size', 1000)),
        )

    def get_default_policies(self) -> List[RetentionPolicy]:
        """Policies seeded into a fresh database."""
        policies = []
        for policy_data in self.config.get('policies') or []:
            policy = RetentionPolicy(
                policy_name=policy_data['policy_name'],
                data_classification=policy_data['data_classification'],
                retention_days=int(policy_data['retention_days']),
                archive_after_days=policy_data.get('archive_after_days'),
                delete_after_days=policy_data.get('delete_after_days'),
                is_active=bool(policy_data.get('is_active', True)),
                description=policy_data.get('description'),
            )
            policy.validate()
            policies.append(policy)
        return policies

    @property
    def enabled(self) -> bool:
        return bool(self.config['global'].get('enabled', True))

    @property
    def verify_deletion(self) -> bool:
        return bool(self.config['deletion'].get('verify_deletion', True))

    @property
    def default_retrieval_limit(self):
        return self.config['retrieval'].get('default_limit')

    @property
    def logs_dir(self) -> str:
        return self.config['logging'].get('logs_dir', 'logs/archival')

    @property
    def log_operations(self) -> bool:
        return bool(self.config['logging'].get('log_operations', True))

    def update_config(self, section: str, values: Dict[str, Any]):
        """Update one section and persist the whole configuration."""
        if section not in self.config or not isinstance(self.config[section], dict):
            self.config[section] = {}
        self.config[section].update(values)
        self._save_config(self.config)
