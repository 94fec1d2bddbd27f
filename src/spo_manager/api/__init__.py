from .auth_manager import AuthenticationManager
from .sharepoint_client import SharePointAPIClient

__all__ = ["AuthenticationManager", "SharePointAPIClient"]
