"""
nobl9-sync

Applies Nobl9 manifests from a repository, resolving RoleBinding user emails
to user IDs through a cached, retrying, concurrency-bounded resolver.
"""
