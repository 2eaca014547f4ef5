"""
Configuration Management Module

Centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class AdminConfig(BaseSettings):
    """Environment administration backend configuration"""
    
    # Filesystem layout
    base_path: str = "/opt/lunas-digital"
    template_port: int = 4000
    template_directory: str = "rota-4000.teste"
    admin_port: int = 7000  # This server; never treated as an environment
    directory_prefix: str = "rota-"
    directory_suffix: str = ".producao"
    port_min: int = 1000
    port_max: int = 9999
    shared_directories: List[str] = ["shared", "cache-centralizado"]
    environment_file: str = ".env"
    integration_config_file: str = "config/config.env"
    
    # Persistence
    database_path: str = "data/database.json"
    admin_username: str = "admin"
    admin_password: str = "admin123"
    
    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    auth_enabled: bool = True
    
    # Credential verification service (empty = not configured)
    verification_url: str = ""
    verification_timeout: float = 15.0
    
    # Partner lookups are proxied through each environment's own server
    lookup_host: str = "127.0.0.1"
    lookup_path: str = "/api/clt/{integration}/simular"
    lookup_timeout: float = 60.0
    batch_concurrency: int = 10
    
    # Reconciliation creates owner credentials for unregistered directories
    reconcile_random_passwords: bool = False
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 7000
    
    class Config:
        env_prefix = "ENV_ADMIN_"
        env_file = ".env"
        case_sensitive = False
    
    def directory_for_port(self, port: int) -> str:
        """Directory name of the environment served on ``port``"""
        return f"{self.directory_prefix}{port}{self.directory_suffix}"


# Global configuration instance
config = AdminConfig()


def get_config() -> AdminConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> AdminConfig:
    """Reload configuration from environment"""
    global config
    config = AdminConfig()
    return config
