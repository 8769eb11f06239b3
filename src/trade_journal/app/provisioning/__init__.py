"""Broker account provisioning: request building, polling, reconciliation.

Submodules are imported directly (``provisioning.controller``,
``provisioning.service``, ...); this package keeps no import-time wiring
because the provider client depends on ``provisioning.request``.
"""
