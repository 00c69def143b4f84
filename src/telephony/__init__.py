"""Asterisk ARI integration.

The link owns the event websocket and REST client, the dispatcher turns raw
ARI events into call lifecycle events, and the actions wrap channel commands
that wait for Asterisk to confirm them.
"""
