# HomeVault - Web API
#
# FastAPI backend the local UI uses for accounts, vault items,
# password health and search.

from .main import app, start_api_server
from .services import VaultServices, services

__all__ = [
    "app",
    "start_api_server",
    "VaultServices",
    "services",
]
