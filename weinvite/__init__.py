"""weinvite: order, catalog and payment backend for custom wedding invitations."""

__version__ = "1.0.0"
