"""
oodasre: OODA incident-response investigation core.

Runs each incident through Observe, Orient, Decide, Act and Verify,
escalating remediation from rollback to code fix and verifying recovery
with synthetic traffic.
"""

__version__ = "0.1.0"
