"""
auditvault - Backup and restore for audit-management data

auditvault packages every data collection of a multi-tenant audit-management
application (audits, vulnerabilities, users, clients, companies, templates,
settings and their reference data) into one portable archive, and restores
it into the same or another deployment.

Key Features:
    - Selective backups by category
    - Optional password protection (AES-256-CBC, PBKDF2-HMAC-SHA256 key)
    - Two restore modes: upsert (merge by natural key) and revert (replace)
    - Streaming export and import; memory use does not grow with data size
    - Persisted operation state for progress polling
"""

__version__ = "0.1.0"

from auditvault.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
