"""Multi-tenant CRM core: role permissions and financial document lifecycle."""

__version__ = "0.1.0"
