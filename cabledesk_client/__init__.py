"""
CableDesk client package.

Authenticated HTTP access to the CableDesk billing back end, with transparent
access-token refresh, plus the ``cabledesk`` command-line interface.
"""
