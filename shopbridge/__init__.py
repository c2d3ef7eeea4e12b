"""
shopbridge

Storefront order notifications, welcome DMs and operator messaging for a
Discord community, delivered through a durable outbound queue.
"""
__version__ = "1.0.0"
