"""
openphone_sync - Push a legal practice's client directory into OpenPhone.

Keeps OpenPhone contacts in step with the practice's clients and imports
OpenPhone calls and conversations into the communication log.
"""

__version__ = "0.1.0"
