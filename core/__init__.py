"""Core module - configuration, errors, observability and security.

Shared by the banking domain, the categorization engine, the bank
connectors, the API and the Temporal sweep worker. Nothing here talks to a
bank directly; vendor-specific logic belongs in /connectors/.
"""

__version__ = "1.0.0"
