from typing import Optional, Dict, Any, List
import os
from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt, Confirm
import keyring
from keyring.errors import KeyringError
import logging

logger = logging.getLogger(__name__)

console = Console()

KEYRING_SERVICE = 'daeli'
STORE_BACKENDS = ('sql', 'memory')


class ConfigManager:
    """Manage application configuration and environment variables"""

    def __init__(self, env_file: str = None):
        """Initialize config manager"""
        if env_file:
            self.env_file = env_file
        else:
            # .env at the project root, one level above the package
            project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
            self.env_file = os.path.join(project_root, '.env')
            logger.debug(f"Looking for .env file at: {self.env_file}")

        self.config = {}
        self.load_config()

    def load_config(self):
        """Load configuration from environment and .env file"""
        if os.path.exists(self.env_file):
            logger.info(f"Loading environment variables from {self.env_file}")
            load_dotenv(self.env_file, override=True)

        self.config['app'] = self._load_app_config()
        self.config['features'] = self._load_feature_config()
        self.config['api'] = self._load_api_config()
        self.config['development'] = self._load_dev_config()
        return self.config

    def _load_app_config(self) -> Dict[str, Any]:
        """Load application settings"""
        return {
            'timezone': os.getenv('TIMEZONE', 'UTC'),
            'store_backend': os.getenv('STORE_BACKEND', 'sql').lower(),
            'database_url': self._load_database_url()
        }

    def _load_database_url(self) -> str:
        """DATABASE_URL, then the keyring secret, then a local SQLite file"""
        url = os.getenv('DATABASE_URL') or self._get_secret('database_url')
        if url:
            return url
        db_path = self._expand_path(os.getenv('DATABASE_PATH', '~/.daeli/daeli.db'))
        return f'sqlite:///{db_path}'

    def _load_feature_config(self) -> Dict[str, Any]:
        """Load feature flags"""
        return {
            'strict_references': self._parse_bool(os.getenv('STRICT_REFERENCES', 'false'))
        }

    def _load_api_config(self) -> Dict[str, Any]:
        """Load HTTP server settings"""
        origins = os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000')
        return {
            'host': os.getenv('API_HOST', '127.0.0.1'),
            'port': int(os.getenv('API_PORT', 8000)),
            'cors_origins': [o.strip() for o in origins.split(',') if o.strip()]
        }

    def _load_dev_config(self) -> Dict[str, Any]:
        """Load development settings"""
        return {
            'debug': self._parse_bool(os.getenv('DEBUG', 'false')),
            'log_level': os.getenv('LOG_LEVEL', 'INFO').upper()
        }

    def _expand_path(self, path: str) -> str:
        """Expand user and environment variables in path"""
        if not path:
            return path
        return os.path.expandvars(os.path.expanduser(path))

    def _parse_bool(self, value: str) -> bool:
        """Parse string boolean value"""
        return str(value).lower() in ('true', '1', 'yes', 'on')

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        parts = key.split('.')
        value = self.config
        for part in parts:
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return default
        return value if value is not None else default

    def problems(self) -> List[str]:
        """Configuration errors that would stop the planner from starting"""
        problems = []
        backend = self.get('app.store_backend')
        if backend not in STORE_BACKENDS:
            problems.append(f"- STORE_BACKEND: must be one of {', '.join(STORE_BACKENDS)}, got '{backend}'")
        if backend == 'sql' and not self.get('app.database_url'):
            problems.append("- DATABASE_URL: a database URL is required for the SQL store")
        port = self.get('api.port')
        if not 0 < port < 65536:
            problems.append(f"- API_PORT: {port} is not a valid port")
        return problems

    def validate(self) -> bool:
        """Validate required configuration"""
        self.load_config()

        missing = self.problems()
        if missing:
            console.print("[bold red]Invalid Configuration:[/bold red]")
            for msg in missing:
                console.print(msg)
            return False

        return True

    def setup_wizard(self):
        """Interactive setup wizard for configuration"""
        console.print("[bold blue]Daeli Setup Wizard[/bold blue]")
        console.print("This wizard will help you set up where your ideas and dates are stored.\n")

        backend = Prompt.ask("Store backend", choices=list(STORE_BACKENDS), default='sql')
        database_path = '~/.daeli/daeli.db'
        if backend == 'sql':
            if Confirm.ask("Use an external database (URL kept in the system keyring)?", default=False):
                url = Prompt.ask("Enter the database URL", password=True)
                self._save_secret('database_url', url)
            else:
                database_path = Prompt.ask("SQLite database path", default=database_path)

        timezone = Prompt.ask("Display timezone", default='UTC')
        self._create_env_file(backend, database_path, timezone)

        self.load_config()

        console.print("\n[bold green]Setup complete! Configuration has been saved.[/bold green]")

    def _save_secret(self, key: str, value: str):
        """Save secret to system keyring"""
        if value:
            keyring.set_password(KEYRING_SERVICE, key, value)

    def _get_secret(self, key: str) -> Optional[str]:
        """Get secret from system keyring"""
        try:
            return keyring.get_password(KEYRING_SERVICE, key)
        except KeyringError as e:
            logger.debug(f"Keyring unavailable: {e}")
            return None

    def _create_env_file(self, backend: str = 'sql', database_path: str = '~/.daeli/daeli.db',
                         timezone: str = 'UTC'):
        """Create .env file with non-sensitive settings"""
        env_content = f"""# Application Settings
TIMEZONE={timezone}
STORE_BACKEND={backend}
DATABASE_PATH={database_path}

# Optional Features
STRICT_REFERENCES=false

# API Server
API_HOST=127.0.0.1
API_PORT=8000
CORS_ORIGINS=http://localhost:3000,http://127.0.0.1:3000

# Development Settings
DEBUG=false
LOG_LEVEL=INFO"""

        with open(self.env_file, 'w') as f:
            f.write(env_content)

    def ensure_directories(self):
        """Ensure the SQLite database directory exists"""
        url = self.get('app.database_url', '')
        if url.startswith('sqlite:///'):
            path = os.path.dirname(url.replace('sqlite:///', '', 1))
            if path:
                os.makedirs(self._expand_path(path), exist_ok=True)
