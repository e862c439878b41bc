"""
Authentication package for the CableDesk client.

This package contains authentication-related functionality including
secure token storage, the credential store, reactive token refresh, and
session termination.
"""
