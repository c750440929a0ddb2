"""Civilytix backend: an entitlement-gated ledger of geospatial extractions.

Paying users submit region and path extraction requests. Each accepted
request gets a unique ticket, a deterministic result URL and an immutable
entry in the user's append-only history, which can later be listed or
looked up by ticket.

- Gates every extraction on the user's payment entitlement
- Mints ``req_<uuid>`` tickets and builds result URLs by data type
- Keeps per-user history in memory or in PostgreSQL
- Hands accepted jobs to an external artifact producer

See module docstrings for details on architecture and usage.
"""
