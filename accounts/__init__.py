"""Accounts application for the hospital management system.

This package holds the principal (profile) model, the gateway to the
hosted auth provider, session monitoring, the session guard, role based
access control and the route middleware shared by every page.
"""
