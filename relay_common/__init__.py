"""
Shared protocol package for the relay chat client.

Contains the wire message record, its codec, constants and the error taxonomy.
"""
