"""Building blocks for a DNS proxy: resolvers, dialing, replies and configuration."""

__version__ = "0.1.0"