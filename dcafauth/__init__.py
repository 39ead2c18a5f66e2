"""Delegated CoAP authentication and authorization: tickets, ticket faces, an authorization manager and client helpers."""

__version__ = "0.2.0"