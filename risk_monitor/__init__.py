"""Patient risk monitoring for a medical center.

This package holds the risk rules, the monitoring pipeline and its domain
models. Storage and notification backends live in ``adapters``.
"""
