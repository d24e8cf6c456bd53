"""
Webhook Bridge — relays broker messages to an internal HTTP endpoint.

Connects to a broker, subscribes to one topic, POSTs each received message to
the configured webhook target and sends a correlated reply back to the broker.
"""
