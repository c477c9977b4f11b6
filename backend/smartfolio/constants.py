"""
Constants for the Smartfolio billing backend.

These values are stable across environments and do not need env-var
overrides. Plan limits live in services/plan_catalog.py; operational
parameters (timeouts, table names, price ids) live in config.py.
"""

# --- API metadata ---
API_TITLE = "Smartfolio Billing API"
API_VERSION = "0.1.0"
API_DESCRIPTION = (
    "Subscription, entitlement and usage-quota service for Smartfolio. "
    "Creates Stripe checkout and portal sessions, reconciles Stripe webhooks "
    "into local subscription state and gates portfolio and AI features by plan."
)

# --- Webhook ---
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"
