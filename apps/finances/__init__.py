"""Finances app package.

Contains the payment ledger (charges, refunds, commission split and the
booking payment status derived from them) and the orchestrator that
charges through the configured gateways, falling back to a manual bank
transfer when every provider fails.
"""
