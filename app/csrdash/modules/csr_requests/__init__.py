"""
CSR Requests module.

Scope:
- Request queue (status filter, fuzzy search, pagination)
- Request detail with the status history ledger
- Actioning pending requests (pending / rejected / completed + comment)

Ledger rules:
- History is append-only and newest first
- The current status is always the newest entry's status
"""
