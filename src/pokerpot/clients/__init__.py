"""Clients for services outside the ledger: remote data store and notifications."""
