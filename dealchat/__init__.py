"""DealChat: deterministic chat front-end over a CRM record store."""

__version__ = "0.1.0"
