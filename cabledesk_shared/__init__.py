"""
Shared building blocks for the CableDesk client.

Exception hierarchy, logging setup, domain models and the interfaces consumed
by the authentication core.
"""
