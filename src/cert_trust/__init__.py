"""
cert_trust — versioned trust bundles for X.509 roots and intermediates.

Keeps a historical record of trusted root and intermediate certificates in
PostgreSQL and cuts point-in-time releases of each bundle, rolling every
release forward from the previous one while dropping revoked, expired and
not-yet-valid certificates.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
