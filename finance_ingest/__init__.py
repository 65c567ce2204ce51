"""
Finance email ingestion for Microsoft 365 mailboxes.

A small, idempotent pipeline that:
- Pulls candidate invoice/receipt emails from a mailbox folder
- Deduplicates messages and attachments by natural keys
- Extracts invoice numbers and amounts
- Evaluates categorisation and approval rules
- Flags duplicate invoices and posts ledger entries
- Records one audit entry per run
"""
