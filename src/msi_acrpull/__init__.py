"""
MSI AcrPull Operator - keeps image pull secrets for Azure Container Registry
valid using managed identities instead of long-lived credentials.

For every AcrPullBinding the operator:
- Exchanges the managed identity's token for a registry access token
- Materializes it as a docker-config pull secret owned by the binding
- Attaches the secret to the target service account
- Renews the token before it expires
"""

__version__ = "0.1.0"
