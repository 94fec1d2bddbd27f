"""SharePoint Online Manager: audit, compare and synchronize SharePoint sites."""

__version__ = "1.0.0"
