"""
node-spine - container runtimes for a cluster node agent.

Launches containers under docker through the setuid ``container-executor``
helper and delivers signals to them.
"""

__version__ = "0.1.0"
