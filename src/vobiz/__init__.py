"""Vobiz integration modules: wire models, REST client, stream event handlers."""
