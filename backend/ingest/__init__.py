"""Trade confirmation email ingest.

This package contains:
- IMAP mailbox client (fetch unread, archive after processing)
- Heuristic and LLM-backed trade extraction (email_parsing)
- Symbol resolution and option symbol encoding
- Persistence gate (the only writer of transactions)
- Manual review queue
"""
