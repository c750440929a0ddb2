"""API router subpackage for the extraction ledger.

Submodules:
    - extract: Paid region and path extraction endpoints.
    - history: Listing and lookup of a user's past requests.
    - admin: User provisioning and entitlement updates.
    - identity: Caller identity and repository dependencies.
"""
