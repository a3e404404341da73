"""
authbroker
==========

Authentication request broker for first-party clients (web, TV, mobile).

The service mediates two asynchronous login flows and hands out a signed
session token once a flow has been proven complete:

- Provider flow: OIDC / OAuth2 authorization code login with an external
  identity provider. The client polls while the user signs in elsewhere.
- Quick-connect flow: a device without a keyboard shows a short code, an
  already signed-in session claims it, and the device redeems it.

Packages:
- auth: request stores, provider registry, user resolution, token signing,
  the broker service and its HTTP routes
- database: the user / identity data-access collaborator
- config: pydantic-settings configuration
- main: FastAPI application factory
"""

__version__ = "0.1.0"
