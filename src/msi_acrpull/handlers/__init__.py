"""
Handlers package - Contains all Kopf event handlers for AcrPullBinding resources.

- acrpullbinding.py: create/update/delete handlers, the token refresh daemon
  and the pull secret watcher
"""
