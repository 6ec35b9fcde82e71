"""QueryGenie API - workspaces, invitations, query conversations and a credential vault."""

__version__ = "0.1.0"
