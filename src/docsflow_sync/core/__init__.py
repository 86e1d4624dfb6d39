"""Repository client functionality shared by the engines and the service."""

from .async_utils import run_sync
from .client import GitHubClient
from .repository import RepositoryClient

__all__ = ["GitHubClient", "RepositoryClient", "run_sync"]
