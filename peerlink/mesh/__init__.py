"""LAN peer discovery and messaging.

Nodes announce ``address:port`` over UDP broadcast, keep a table of the
peers they hear, and exchange path-routed JSON requests over TCP.
"""
