"""
Constants used throughout the MSI AcrPull operator.

This module defines the constant values shared by the reconciler,
the token exchanger and the kopf handlers:
- Custom resource coordinates and finalizer name
- Pull secret naming and layout
- Token refresh timing
"""

from datetime import timedelta

# AcrPullBinding custom resource coordinates
ACRPULL_GROUP = "msi-acrpull.microsoft.com"
ACRPULL_VERSION = "v1beta1"
ACRPULL_API_VERSION = f"{ACRPULL_GROUP}/{ACRPULL_VERSION}"
ACRPULL_KIND = "AcrPullBinding"
ACRPULL_PLURAL = "acrpullbindings"

# Finalizer blocking binding deletion until the service account is cleaned up
ACRPULL_FINALIZER = "msi-acrpull.microsoft.com"

# Annotation stamped on a binding to make kopf deliver an update event
FORCE_RECONCILE_ANNOTATION = "msi-acrpull.microsoft.com/force-reconcile"

# Pull secret layout
DOCKER_CONFIG_KEY = ".dockerconfigjson"
DOCKER_CONFIG_SECRET_TYPE = "kubernetes.io/dockerconfigjson"
PULL_SECRET_SUFFIX = "-msi-acrpull-secret"
DEFAULT_SERVICE_ACCOUNT_NAME = "default"

# ACR accepts refresh/access tokens with this placeholder user name
ACR_TOKEN_USERNAME = "00000000-0000-0000-0000-000000000000"

# Registry token exchange
DEFAULT_ACR_SCOPE = "repository:*:pull"
ACR_EXCHANGE_GRANT_TYPE = "refresh_token"
ACR_TOKEN_GRANT_TYPE = "refresh_token"
ARM_TOKEN_SCOPE = "https://management.azure.com/.default"

# Renew tokens this long before they expire
TOKEN_REFRESH_BUFFER = timedelta(minutes=30)

# Status field names (camelCase, as stored on the custom resource)
STATUS_LAST_REFRESH = "lastTokenRefreshTime"
STATUS_EXPIRATION = "tokenExpirationTime"
STATUS_ERROR = "error"
