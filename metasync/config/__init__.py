"""
Configuration management for metasync
Handles document store, provider and sync settings from YAML and environment variables
"""

import logging
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


class Config:
    """
    Central configuration manager for metasync

    This class:
    - Loads the YAML service configuration
    - Applies environment variable overrides
    - Provides MongoDB, S3 and sync settings
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path(__file__).parent
        self.services = self._load_yaml('services.yml')
        logger.debug("Configuration loaded from: %s", self.config_dir)

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load YAML configuration file with error handling"""
        config_path = self.config_dir / filename
        if not config_path.exists():
            logger.debug("Config file not found: %s", config_path)
            return {}
        try:
            with open(config_path, 'r') as f:
                content = yaml.safe_load(f)
                return content or {}
        except yaml.YAMLError as e:
            logger.error("Error loading %s: %s", filename, e)
            return {}

    def get_service_config(self, service_name: str) -> Dict[str, Any]:
        """Get configuration for a specific service"""
        return self.services.get(service_name, {}) or {}

    def get_mongodb_config(self) -> Dict[str, Any]:
        """Get MongoDB configuration with environment variable overrides"""
        mongo_config = self.get_service_config('mongodb')

        # Build connection string
        host = os.getenv('MONGO_HOST') or mongo_config.get('host', 'localhost')
        port = os.getenv('MONGO_PORT') or mongo_config.get('port', 27017)
        username = os.getenv('MONGO_USERNAME')
        password = os.getenv('MONGO_PASSWORD')

        if username and password:
            connection_string = f"mongodb://{username}:{password}@{host}:{port}/"
        else:
            connection_string = f"mongodb://{host}:{port}/"

        return {
            'connection_string': os.getenv('MONGO_CONNECTION_STRING') or connection_string,
            'database': os.getenv('MONGO_DATABASE') or mongo_config.get('database', 'metadatastore'),
            'collection': os.getenv('MONGO_COLLECTION') or mongo_config.get('collection', 'metadatabucket'),
            'server_selection_timeout_ms': int(mongo_config.get('server_selection_timeout_ms', 5000)),
        }

    def get_s3_config(self) -> Dict[str, Any]:
        """Get S3 configuration with environment variable overrides"""
        s3_config = self.get_service_config('s3')

        return {
            'aws_access_key_id': os.getenv('AWS_ACCESS_KEY_ID'),
            'aws_secret_access_key': os.getenv('AWS_SECRET_ACCESS_KEY'),
            'aws_session_token': os.getenv('AWS_SESSION_TOKEN'),
            'region': os.getenv('AWS_REGION') or s3_config.get('region', 'us-east-1'),
            'endpoint_url': os.getenv('AWS_S3_ENDPOINT_URL') or s3_config.get('endpoint_url'),
            'max_pool_connections': int(s3_config.get('max_pool_connections', 50)),
            'max_attempts': int(s3_config.get('max_attempts', 5)),
        }

    def get_sync_config(self) -> Dict[str, Any]:
        """Get sync engine settings with environment variable overrides"""
        sync_config = self.get_service_config('sync')

        max_workers = os.getenv('METASYNC_MAX_WORKERS') or sync_config.get('max_workers', 0)
        on_bucket_error = (
            os.getenv('METASYNC_ON_BUCKET_ERROR') or sync_config.get('on_bucket_error', 'raise')
        ).lower()
        if on_bucket_error not in ('raise', 'log'):
            logger.warning("Unknown on_bucket_error policy %r, using 'raise'", on_bucket_error)
            on_bucket_error = 'raise'

        return {
            'max_workers': int(max_workers or 0),
            'on_bucket_error': on_bucket_error,
            'paginate_objects': _env_bool(
                'METASYNC_PAGINATE_OBJECTS', bool(sync_config.get('paginate_objects', True))
            ),
            'page_size': int(sync_config.get('page_size', 1000)),
        }

    def get_metrics_config(self) -> Dict[str, Any]:
        """Get Prometheus exporter settings"""
        metrics_config = self.get_service_config('metrics')
        port = os.getenv('METASYNC_METRICS_PORT') or metrics_config.get('port')
        return {
            'enabled': _env_bool('METASYNC_METRICS_ENABLED', bool(metrics_config.get('enabled', True))),
            'port': int(port) if port else None,
        }

    def validate_config(self) -> Dict[str, bool]:
        """Validate that all required configurations are present"""
        validation_results = {}

        mongo_config = self.get_mongodb_config()
        validation_results['mongodb'] = bool(
            mongo_config.get('connection_string') and mongo_config.get('database')
        )

        # Credentials may also come from the default boto3 chain, so only a
        # half-configured key pair is invalid
        s3_config = self.get_s3_config()
        has_key = bool(s3_config.get('aws_access_key_id'))
        has_secret = bool(s3_config.get('aws_secret_access_key'))
        validation_results['s3'] = bool(s3_config.get('region')) and has_key == has_secret

        return validation_results

    def print_config_summary(self):
        """Print a summary of the current configuration"""
        print("\nmetasync configuration summary")
        print("=" * 50)

        mongo_config = self.get_mongodb_config()
        connection = mongo_config.get('connection_string', '')
        print(f"MongoDB: {mongo_config.get('database')}.{mongo_config.get('collection')} @ "
              f"{connection.split('@')[-1] if '@' in connection else connection}")

        s3_config = self.get_s3_config()
        print(f"S3: {s3_config.get('region')} region, endpoint={s3_config.get('endpoint_url') or 'aws'}")

        sync_config = self.get_sync_config()
        print(f"Sync: max_workers={sync_config['max_workers'] or 'per-bucket'}, "
              f"on_bucket_error={sync_config['on_bucket_error']}, "
              f"paginate_objects={sync_config['paginate_objects']}")

        validation = self.validate_config()
        print(f"\nValidation: {sum(validation.values())}/{len(validation)} services configured")
        for service, is_valid in validation.items():
            status = "OK " if is_valid else "BAD"
            print(f"  [{status}] {service}")

        print("=" * 50)


# Global configuration instance
config = Config()

# Export for easy importing
__all__ = ['Config', 'config']
